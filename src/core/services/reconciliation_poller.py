from typing import Callable

from common.custom_exceptions.source_unavailable_error import SourceUnavailableError
from common.logger import logger
from core.services.recency_store import RecencyStore, now_ms
from core.services.token_normalizer import token_from_moralis_item
from infrastructure.data_sources.moralis.client import MoralisNewTokensClient


class ReconciliationPoller:
    """Backfills the store from Moralis, independently of the live stream.

    Scheduling is left to the caller (an APScheduler interval job); each
    ``poll_once`` call is one cycle and never raises.
    """

    def __init__(
        self,
        store: RecencyStore,
        source: MoralisNewTokensClient,
        batch_size: int = 30,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.source = source
        self.batch_size = batch_size
        self._clock = clock

    async def poll_once(self) -> int:
        """Fetch one batch and upsert it. Returns the number of tokens stored."""
        try:
            items = await self.source.fetch_new_tokens()
        except SourceUnavailableError as e:
            logger.error(f"[Moralis] Fetch failed: {e}")
            return 0
        except Exception as e:
            logger.exception(f"[Moralis] Unexpected error while fetching: {e}")
            return 0

        stored = 0
        now = self._clock()
        for item in items[:self.batch_size]:
            token = token_from_moralis_item(item, now=now)
            if token is None:
                continue
            self.store.upsert(token)
            stored += 1

        logger.info(f"[Moralis] Fetched {len(items)} tokens ({stored} stored)")
        return stored
