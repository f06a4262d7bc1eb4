from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "EndpointAuth_"


def make_cache_key(http_method: str, route: str) -> str:
    return f"{CACHE_KEY_PREFIX}{http_method}:{route}"


class AuthorizationCache:
    """Process-wide memo of resolved role sets with absolute expiry.

    Expiry is checked lazily on read. Every write carries the generation
    observed before the store was queried; ``invalidate_all`` bumps the
    generation so that a load started before an invalidation cannot
    repopulate the cache with the old role set.
    """

    def __init__(
        self,
        ttl_seconds: float = 1800,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be greater than 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[frozenset[str], float]] = {}
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, key: str) -> frozenset[str] | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            roles, expires_at = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            return roles

    def set(
        self,
        key: str,
        roles: Iterable[str],
        generation: int | None = None,
    ) -> bool:
        expires_at = self._clock() + self.ttl_seconds
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug("Discarding stale cache write for %s", key)
                return False
            self._entries[key] = (frozenset(roles), expires_at)
            return True

    def invalidate_all(self) -> int:
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
            self._generation += 1
        logger.warning("Authorization cache cleared, %s entries dropped", dropped)
        return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
