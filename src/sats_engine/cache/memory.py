"""In-memory LRU cache with per-key TTL, scoped to one unlocked session."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any


class MemoryCache:
    """LRU cache with TTL support.

    Holds session-scoped values such as the quoted fee rate. Created with
    :class:`~sats_engine.engine.state.EngineState` and flushed when the
    wallet locks.
    """

    def __init__(self, max_size: int = 1024, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize the cache.

        Args:
            max_size: Maximum number of keys to store before evicting LRU.
            clock: Monotonic time source in seconds (overridable in tests).
        """
        self._max_size = max_size
        self._clock = clock
        # {key: (value, expiry_or_none)}
        self._cache: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()

    async def get(self, key: str) -> Any | None:  # noqa: ASYNC910
        """Get a value from the cache.

        Returns:
            The cached value, or None if not found or expired.
        """
        entry = self._cache.get(key)
        if entry is None:
            return None

        value, expiry = entry
        if expiry is not None and self._clock() > expiry:
            del self._cache[key]
            return None

        self._cache.move_to_end(key)
        return value

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:  # noqa: ASYNC910
        """Set a value in the cache.

        Args:
            key: Cache key.
            value: Value to store.
            ttl: Time-to-live in seconds. None = no expiry.
        """
        expiry = None if ttl is None else self._clock() + ttl
        self._cache.pop(key, None)
        self._cache[key] = (value, expiry)
        if len(self._cache) > self._max_size:
            self._cache.popitem(last=False)

    async def delete(self, key: str) -> None:  # noqa: ASYNC910
        self._cache.pop(key, None)

    async def flush(self) -> None:  # noqa: ASYNC910
        """Clear all keys from the cache."""
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
