import logging
from typing import Any, Dict, List, Optional

import httpx

from common.config.settings import MORALIS_NEW_TOKENS_URL
from common.custom_exceptions.source_unavailable_error import SourceUnavailableError

logger = logging.getLogger(__name__)


class MoralisNewTokensClient:
    """Pulls the latest pump.fun launches from the Moralis Solana gateway."""

    def __init__(
        self,
        api_key: str = "",
        url: str = MORALIS_NEW_TOKENS_URL,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def fetch_new_tokens(self) -> List[Dict[str, Any]]:
        """
        Return the raw ``result`` rows.

        Raises:
            SourceUnavailableError: on network failure, a non-2xx status or an
                undecodable body.
        """
        client = await self._get_client()
        try:
            response = await client.get(
                self.url,
                headers={"X-API-Key": self.api_key},
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise SourceUnavailableError("Moralis returned an error status", str(e.response.status_code)) from e
        except httpx.HTTPError as e:
            raise SourceUnavailableError("Moralis request failed", repr(e)) from e
        except ValueError as e:
            raise SourceUnavailableError("Moralis response was not valid JSON", str(e)) from e

        result = data.get("result") if isinstance(data, dict) else None
        if not isinstance(result, list):
            logger.warning("Moralis response carried no result list")
            return []
        return [item for item in result if isinstance(item, dict)]

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
