"""
TTL cache for session list pages.

Keys are (owner, page_size, filter signature, cursor signature). An entry is
served only while it is younger than the TTL and no write for its owner has
happened since it was stored. Every successful write for an owner drops all
of that owner's entries.

Each owner also has a generation number bumped on invalidation. A reader
records the generation before going to the store and hands it back on put();
if a write happened in between, the stale result is not cached.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from ..config import settings
from ..models import ChatHistoryResult

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, int, str, str]


@dataclass
class _Entry:
    result: ChatHistoryResult
    inserted_at: float


class SessionCache:
    """Mutex-guarded page cache, one instance per service."""

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            ttl_seconds: Maximum entry age (default from settings, 5 minutes)
            clock: Monotonic seconds source, injectable for tests
        """
        self.ttl_seconds = settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, _Entry] = {}
        self._generations: Dict[str, int] = {}
        self._epoch = 0  # bumped by clear()
        self._lock = threading.Lock()

    @staticmethod
    def make_key(owner: str, page_size: int, filter_signature: str, cursor: Optional[str]) -> CacheKey:
        return (owner, page_size, filter_signature, cursor or "")

    def generation(self, owner: str) -> Tuple[int, int]:
        with self._lock:
            return (self._epoch, self._generations.get(owner, 0))

    def get(self, key: CacheKey) -> Optional[ChatHistoryResult]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug(f"Session cache MISS for owner {key[0]}")
                return None
            if self._clock() - entry.inserted_at >= self.ttl_seconds:
                del self._entries[key]
                logger.debug(f"Session cache EXPIRED for owner {key[0]}")
                return None
            logger.debug(f"Session cache HIT for owner {key[0]}")
            return entry.result.model_copy(deep=True)

    def put(self, key: CacheKey, result: ChatHistoryResult, generation: Tuple[int, int]) -> bool:
        """
        Store a page read while the owner was at the given generation.

        Returns:
            bool: False if the owner was invalidated since, and nothing was stored
        """
        owner = key[0]
        with self._lock:
            if (self._epoch, self._generations.get(owner, 0)) != generation:
                logger.debug(f"Discarding stale page for owner {owner}")
                return False
            self._entries[key] = _Entry(result.model_copy(deep=True), self._clock())
            return True

    def invalidate(self, owner: str) -> int:
        """Drop every entry for the owner. Returns the number of entries removed."""
        with self._lock:
            self._generations[owner] = self._generations.get(owner, 0) + 1
            keys = [key for key in self._entries if key[0] == owner]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug(f"Invalidated {len(keys)} cached pages for owner {owner}")
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
