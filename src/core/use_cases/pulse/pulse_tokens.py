# src/core/use_cases/pulse/pulse_tokens.py
from typing import Any, Dict, Optional

from core.services.recency_store import RecencyStore
from infrastructure.data_sources.pumpportal.client import PumpPortalStream

DEFAULT_LIMIT = 50
MAX_LIMIT = 100


def clamp_limit(limit: Optional[int]) -> int:
    """Missing or non-positive limits fall back to the default; the rest are capped."""
    if not limit or limit < 1:
        return DEFAULT_LIMIT
    return min(limit, MAX_LIMIT)


class PulseTokensQuery:
    """Read-only view over the recency store for the HTTP layer."""

    def __init__(self, store: RecencyStore, stream: PumpPortalStream):
        self.store = store
        self.stream = stream

    def get_tokens(self, limit: Optional[int] = DEFAULT_LIMIT) -> Dict[str, Any]:
        # Expired tokens are dropped before every read, not just on the cleanup job
        self.store.sweep()
        tokens, total = self.store.snapshot(clamp_limit(limit))
        return {
            "tokens": tokens,
            "count": total,
            "wsConnected": self.stream.is_connected,
        }

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "wsConnected": self.stream.is_connected,
            "tokenCount": self.store.count(),
        }
