"""
TTL cache with LRU eviction for monitoring reads.

Entries live in a single OrderedDict ordered from least to most recently
used. Reads move an entry to the end, writes evict from the front once
``max_entries`` is reached, and entries older than their TTL are treated
as misses and dropped.

Concurrent misses on the same key share one in-flight load, so a burst of
identical reads issues one datastore query. A load that started before
``clear`` returns its value to its callers but does not store it.

Example:
    >>> cache = TTLCache(max_entries=100, default_ttl=300)
    >>> key = TTLCache.make_key("monitoring_events", filters, pagination)
    >>> response = await cache.get_or_load(key, load_events, ttl=300)
"""

import asyncio
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class CacheEntry:
    """One cached value with its monotonic write time and TTL in seconds."""

    key: str
    value: Any
    written_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.written_at > self.ttl


def _key_default(obj: Any) -> Any:
    """JSON fallback for cache key arguments."""
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", exclude_none=True)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return sorted(obj, key=str)
    raise TypeError(f"Cannot build a cache key from {type(obj).__name__}")


class TTLCache:
    """
    Bounded TTL cache with least-recently-used eviction.

    Attributes:
        max_entries: Capacity.
        default_ttl: TTL in seconds used when ``set`` gets none.
    """

    def __init__(
        self,
        max_entries: int = 100,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._pending: Dict[str, asyncio.Future] = {}
        self._generation = 0
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(name: str, *args: Any, **kwargs: Any) -> str:
        """
        Build a deterministic key from a method name and its arguments.

        Args:
            name: Operation name.
            *args: Positional arguments of the operation.
            **kwargs: Keyword arguments of the operation.

        Returns:
            str: JSON key with sorted object keys.
        """
        return json.dumps(
            {"op": name, "args": list(args), "kwargs": kwargs},
            sort_keys=True,
            default=_key_default,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def get(self, key: str, default: Any = None) -> Any:
        """
        Return a live value and mark it most recently used.

        Args:
            key: Cache key.
            default: Returned on a miss.

        Returns:
            Any: Cached value or default.
        """
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self.misses += 1
            return default

        self._entries.move_to_end(key)
        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store a value, evicting the least recently used entry if full.

        Args:
            key: Cache key.
            value: Value to store.
            ttl: TTL in seconds, defaults to ``default_ttl``.
        """
        if key in self._entries:
            del self._entries[key]

        while len(self._entries) >= self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("cache_entry_evicted", key=evicted)

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            written_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def invalidate(self, key: str) -> None:
        """Drop one entry if present."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry and discard results of loads still in flight."""
        self._entries.clear()
        self._pending.clear()
        self._generation += 1

    def purge_expired(self) -> int:
        """
        Drop all expired entries.

        Returns:
            int: Number of entries dropped.
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return a cached value or load it once for all concurrent callers.

        Failed loads are not cached; every waiting caller gets the error.

        Args:
            key: Cache key.
            loader: Async callable producing the value.
            ttl: TTL in seconds for the loaded value.

        Returns:
            Any: Cached or freshly loaded value.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._load(key, loader, ttl, self._generation))
            self._pending[key] = pending
            pending.add_done_callback(lambda done: self._forget_pending(key, done))

        return await asyncio.shield(pending)

    async def _load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float],
        generation: int,
    ) -> Any:
        value = await loader()
        if generation == self._generation:
            self.set(key, value, ttl)
        else:
            logger.debug("cache_load_discarded", key=key)
        return value

    def _forget_pending(self, key: str, done: asyncio.Future) -> None:
        if self._pending.get(key) is done:
            del self._pending[key]
