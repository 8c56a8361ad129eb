import asyncio
import logging
from typing import Optional

import httpx

from core.services.token_normalizer import resolve_image_url

logger = logging.getLogger(__name__)


class MetadataImageResolver:
    """Fetches a token's metadata JSON and pulls out its image URL.

    Best effort only: every failure ends up as ``None``.
    """

    def __init__(self, timeout: float = 3.0, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def fetch_image(self, metadata_url: str) -> Optional[str]:
        try:
            client = await self._get_client()
            # Hard deadline on the whole exchange, not just per socket read
            response = await asyncio.wait_for(
                client.get(metadata_url, timeout=self.timeout),
                timeout=self.timeout
            )
            if not response.is_success:
                return None
            metadata = response.json()
        except (asyncio.TimeoutError, httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.debug(f"Metadata fetch skipped for {metadata_url}: {e!r}")
            return None
        except Exception as e:
            logger.debug(f"Unexpected error fetching metadata {metadata_url}: {e!r}")
            return None

        if not isinstance(metadata, dict):
            return None
        image = metadata.get("image")
        return resolve_image_url(image) if isinstance(image, str) else None

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
