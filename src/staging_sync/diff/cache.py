"""Short-lived cache for diff results.

Entries are keyed by ``(pair_key, scope)`` where *scope* names the diff
kind (``"files"``, ``"database"``).  A synchronization run invalidates
every scope of its pair.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


class DiffCache:
    """Thread-safe TTL cache.

    Args:
        ttl_seconds: Entry lifetime; ``0`` disables caching.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, pair_key: str, scope: str) -> Any | None:
        """Return the cached value, or ``None`` if absent or expired."""
        with self._lock:
            entry = self._entries.get((pair_key, scope))
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[(pair_key, scope)]
                return None
            return value

    def put(self, pair_key: str, scope: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[(pair_key, scope)] = (
                self._clock() + self.ttl_seconds,
                value,
            )

    def get_or_compute(
        self, pair_key: str, scope: str, compute: Callable[[], Any]
    ) -> Any:
        """Return the cached value or compute, store and return it.

        *compute* runs outside the lock so a slow diff does not block
        readers of other scopes.
        """
        cached = self.get(pair_key, scope)
        if cached is not None:
            logger.debug("Diff cache hit: %s/%s", pair_key, scope)
            return cached
        value = compute()
        self.put(pair_key, scope, value)
        return value

    def invalidate(self, pair_key: str) -> int:
        """Drop every scope cached for *pair_key*.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            keys = [k for k in self._entries if k[0] == pair_key]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug(
                "Invalidated %d cached diff(s) for %s", len(keys), pair_key
            )
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
