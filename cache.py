"""Time-bound in-memory cache for remote reads."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import cachetools

DEFAULT_MAX_ENTRIES = 1024

LOGGER = logging.getLogger(__name__)


class TTLCache:
    """Maps keys to values that expire `ttl_seconds` after being stored.

    Values are replaced wholesale by `set`; callers store immutable snapshots.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._entries: cachetools.TTLCache = cachetools.TTLCache(maxsize=max_entries, ttl=ttl_seconds, timer=clock)

    def get(self, key: str) -> Any | None:
        self._entries.expire()
        value = self._entries.get(key)
        if value is not None:
            LOGGER.debug("Cache hit key=%s", key)
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
