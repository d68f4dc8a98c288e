"""Bounded LRU cache with per-entry TTL and lazy expiration."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from commonkit.errors import InvalidArgumentError
from commonkit.locks import ReadWriteLock

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_TTL_SECONDS = 3600

# Pending recency touches before a reader drains them itself.
_TOUCH_DRAIN_THRESHOLD = 256


def now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at_ms: int

    def expired(self, now: int | None = None) -> bool:
        current = now_ms() if now is None else now
        return current > self.expires_at_ms


class LruCache(Generic[T]):
    """Fixed-capacity cache evicting the least-recently-used key.

    Each entry carries its own TTL. Expired entries are never returned but
    keep their slot until a ``get`` observes them (or ``purge_expired`` runs).
    Eviction follows recency only, so an expired entry can outlive a live
    entry that was touched less recently.

    Lookups run under a shared read lock. Because a hit has to move the key
    to the most-recent end, readers record the touch in a buffer that the
    next writer replays before it mutates the order. Every write drains the
    buffer first, so recency stays consistent with call order.

    Example:
        >>> cache = LruCache[str](maxsize=2)
        >>> cache.put('a', 'x')
        >>> cache.get('a')
        'x'
        >>> cache.get('missing', 'fallback')
        'fallback'
    """

    def __init__(
        self,
        maxsize: int,
        *,
        default_ttl: int | float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], int] | None = None,
    ) -> None:
        if maxsize < 1:
            raise InvalidArgumentError(f'maxsize must be at least 1: {maxsize}')
        self._maxsize = int(maxsize)
        self._default_ttl = default_ttl
        self._clock = clock or now_ms
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._touches: deque[str] = deque()
        self._lock = ReadWriteLock()

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def default_ttl(self) -> int | float:
        return self._default_ttl

    def put(self, key: str, value: T, ttl_seconds: int | float | None = None) -> None:
        """Insert or replace ``key`` and mark it most recently used.

        Inserting a new key into a full cache evicts the least recently used
        entry. Overwriting an existing key never evicts. ``ttl_seconds`` is not
        validated; zero or negative values produce an already-expired entry.
        """
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        entry = CacheEntry(value=value, expires_at_ms=self._clock() + int(ttl * 1000))
        with self._lock.write_locked():
            self._drain_touches_locked()
            is_new = key not in self._entries
            self._entries[key] = entry
            self._entries.move_to_end(key, last=True)
            if is_new and len(self._entries) > self._maxsize:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug('Evicted least recently used key %r', evicted)

    def get(self, key: str, default: T | None = None) -> T | None:
        """Return the live value for ``key`` or ``default``.

        Missing and expired keys are indistinguishable to the caller. An
        expired entry is removed before returning so its slot is reclaimed.
        """
        self._lock.acquire_read()
        try:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if not entry.expired(self._clock()):
                self._touches.append(key)
                value = entry.value
                backlog = len(self._touches)
            else:
                value = None
                backlog = -1
        finally:
            self._lock.release_read()

        if backlog < 0:
            return self._expire(key, default)

        if backlog >= _TOUCH_DRAIN_THRESHOLD:
            with self._lock.write_locked():
                self._drain_touches_locked()
        return default if value is None else value

    def remove(self, key: str) -> None:
        with self._lock.write_locked():
            self._drain_touches_locked()
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock.write_locked():
            self._touches.clear()
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry now. Returns how many were removed."""
        with self._lock.write_locked():
            self._drain_touches_locked()
            now = self._clock()
            dead = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in dead:
                del self._entries[key]
        if dead:
            logger.debug('Purged %d expired cache entries', len(dead))
        return len(dead)

    def size(self) -> int:
        """Number of occupied slots, including expired entries not yet reclaimed."""
        with self._lock.read_locked():
            return len(self._entries)

    def keys(self) -> list[str]:
        """Keys ordered from least to most recently used."""
        with self._lock.write_locked():
            self._drain_touches_locked()
            return list(self._entries)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        with self._lock.read_locked():
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and not entry.expired(self._clock())

    def _expire(self, key: str, default: T | None) -> T | None:
        # The read lock was released before taking the write lock, so another
        # thread may have removed, replaced or refreshed the key in between.
        with self._lock.write_locked():
            self._drain_touches_locked()
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry.expired(self._clock()):
                del self._entries[key]
                logger.debug('Dropped expired cache key %r', key)
                return default
            self._entries.move_to_end(key, last=True)
            return default if entry.value is None else entry.value

    def _drain_touches_locked(self) -> None:
        touches = self._touches
        entries = self._entries
        while touches:
            key = touches.popleft()
            if key in entries:
                entries.move_to_end(key, last=True)
