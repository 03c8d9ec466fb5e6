# Dataverse FetchXML MCP Server
# File: cache.py
# Version: v1

"""In-process cache for table and column metadata.

Metadata listings (EntityDefinitions, Attributes) change rarely and are
expensive to fetch, so the MCP tools keep them for ``ttl_seconds``.
FetchXML results never go through this cache.

Keys are tuples whose first element names the listing, e.g.
``("attributes", env_url, "account")``; :meth:`MetadataCache.invalidate`
drops every key of one listing.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

CacheKey = Tuple[Hashable, ...]


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    expirations: int = 0


@dataclass
class _Entry:
    value: Any
    expires_at: float

    def expired(self, now: float) -> bool:
        return self.expires_at < now


class MetadataCache:
    """TTL cache; the least recently used entry goes once ``max_entries`` is hit.

    A TTL or capacity of 0 disables caching and every lookup is a miss.
    """

    def __init__(self, ttl_seconds: int = 60, max_entries: int = 128) -> None:
        self.ttl_seconds = int(ttl_seconds)
        self.max_entries = int(max_entries)
        self._entries: "OrderedDict[CacheKey, _Entry]" = OrderedDict()
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0 and self.max_entries > 0

    def get(self, key: CacheKey) -> Optional[Any]:
        entry = self._entries.get(key) if self.enabled else None
        if entry is None:
            self._stats.misses += 1
            return None

        if entry.expired(time.monotonic()):
            del self._entries[key]
            self._stats.misses += 1
            self._stats.expirations += 1
            return None

        self._entries.move_to_end(key)
        self._stats.hits += 1
        return entry.value

    def set(self, key: CacheKey, value: Any) -> None:
        if not self.enabled:
            return

        self._entries[key] = _Entry(value, time.monotonic() + self.ttl_seconds)
        self._entries.move_to_end(key)
        self._stats.sets += 1

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("Metadata cache evicted %r", evicted)

    async def get_or_load(
        self, key: CacheKey, loader: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Return the cached value for ``key`` or await ``loader`` and store it.

        Loader exceptions propagate and nothing is stored.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        value = await loader()
        self.set(key, value)
        return value

    def invalidate(self, listing: Hashable) -> int:
        """Drop every entry whose key starts with ``listing``."""
        doomed = [key for key in self._entries if key and key[0] == listing]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = time.monotonic()
        expired = [key for key, entry in self._entries.items() if entry.expired(now)]
        for key in expired:
            del self._entries[key]
        self._stats.expirations += len(expired)
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "ttl_seconds": self.ttl_seconds,
            "max_entries": self.max_entries,
            "size": len(self._entries),
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "sets": self._stats.sets,
            "evictions": self._stats.evictions,
            "expirations": self._stats.expirations,
        }
