import threading
import time
from collections import OrderedDict
from typing import Callable, List, Optional, Tuple

from core.domain.entities.TokenEntity import TokenEntity


def now_ms() -> int:
    return int(time.time() * 1000)


class RecencyStore:
    """
    Bounded, deduplicated collection of the most recently seen tokens.

    Entries are kept in a single OrderedDict keyed by address, which doubles as
    the id index and the insertion order (last item = most recent). Every read
    and write goes through one lock so the two views can never disagree.
    """

    SNAPSHOT_MAX = 100

    def __init__(
        self,
        capacity: int = 100,
        max_age_ms: int = 5 * 60 * 1000,
        clock: Callable[[], int] = now_ms,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.max_age_ms = max_age_ms
        self._clock = clock
        self._tokens: "OrderedDict[str, TokenEntity]" = OrderedDict()
        self._lock = threading.Lock()

    def upsert(self, token: TokenEntity) -> None:
        """Insert at the front, replacing any token with the same address."""
        with self._lock:
            self._tokens.pop(token.address, None)
            self._tokens[token.address] = token
            while len(self._tokens) > self.capacity:
                self._tokens.popitem(last=False)

    def patch_image(self, address: str, logo: str) -> bool:
        """Swap the logo of a token still in the store. Position is untouched."""
        with self._lock:
            current = self._tokens.get(address)
            if current is None:
                return False
            # Assigning to an existing key keeps its position
            self._tokens[address] = current.model_copy(update={"logo": logo})
            return True

    def sweep(self, now: Optional[int] = None, max_age_ms: Optional[int] = None) -> int:
        """Drop tokens fetched before ``now - max_age_ms``. Returns how many were removed."""
        with self._lock:
            now = self._clock() if now is None else now
            max_age_ms = self.max_age_ms if max_age_ms is None else max_age_ms
            cutoff = now - max_age_ms
            expired = [address for address, token in self._tokens.items() if token.fetched_at < cutoff]
            for address in expired:
                del self._tokens[address]
            return len(expired)

    def snapshot(self, limit: int = SNAPSHOT_MAX) -> Tuple[List[TokenEntity], int]:
        """Up to ``limit`` tokens, most recent first, plus the total count."""
        limit = max(0, min(limit, self.SNAPSHOT_MAX))
        with self._lock:
            total = len(self._tokens)
            tokens = []
            for token in reversed(self._tokens.values()):
                if len(tokens) >= limit:
                    break
                tokens.append(token)
            return tokens, total

    def get(self, address: str) -> Optional[TokenEntity]:
        with self._lock:
            return self._tokens.get(address)

    def count(self) -> int:
        with self._lock:
            return len(self._tokens)

    def clear(self) -> None:
        with self._lock:
            self._tokens.clear()

    def __len__(self) -> int:
        return self.count()
