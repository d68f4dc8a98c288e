"""Async network time lookup based on HTTP ``Date`` response headers."""

from __future__ import annotations

import logging
import time
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Callable

import httpx

from commonkit.cache import LruCache
from commonkit.config import Config

logger = logging.getLogger(__name__)

_OFFSET_CACHE_KEY = 'web-time-offset'


class WebTimeClient:
    """Read the current time from public web servers.

    Each configured site is asked in order for its ``Date`` header; the first
    usable answer wins. The measured offset from the local clock is cached for
    ``config.web_time_cache_ttl`` seconds, so most calls do not touch the
    network. When no site answers, the local clock is used.

    Example:
        >>> client = WebTimeClient(Config.from_env())
        >>> now = await client.current_time_ms()
        >>> await client.is_expired(now - 1000)
        True
    """

    def __init__(
        self,
        config: Config,
        *,
        cache: LruCache[int] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._config = config
        self._clock = clock or _local_millis
        self._cache = cache if cache is not None else LruCache[int](maxsize=1, clock=self._clock)
        self._transport = transport

    async def current_time_ms(self) -> int:
        """Return web time in epoch ms, or local time if every site fails."""
        timestamp, _ = await self.now()
        return timestamp

    async def now(self) -> tuple[int, int | None]:
        """Return ``(timestamp_ms, skew_ms)``; skew is ``None`` on local fallback."""
        offset = await self.clock_skew_ms()
        local = self._clock()
        if offset is None:
            return local, None
        return local + offset, offset

    async def is_expired(self, timestamp_ms: int) -> bool:
        return await self.current_time_ms() > timestamp_ms

    async def clock_skew_ms(self) -> int | None:
        """Remote minus local time in ms, or ``None`` when no site answered."""
        cached = self._cache.get(_OFFSET_CACHE_KEY)
        if cached is not None:
            return cached

        for site in self._config.time_sites:
            remote = await self._fetch_remote_time(site)
            if remote is None:
                continue
            offset = remote - self._clock()
            if self._config.web_time_cache_ttl > 0:
                self._cache.put(_OFFSET_CACHE_KEY, offset, self._config.web_time_cache_ttl)
            return offset

        logger.warning('No time site answered, falling back to the local clock')
        return None

    async def _fetch_remote_time(self, url: str) -> int | None:
        headers = {'User-Agent': self._config.user_agent}
        try:
            async with httpx.AsyncClient(
                headers=headers,
                timeout=self._config.timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.head(url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.debug('Time site %s failed: %s', url, exc)
            return None

        return _parse_date_header(response.headers.get('Date'))

    def invalidate(self) -> None:
        """Forget the cached offset so the next call asks the network again."""
        self._cache.remove(_OFFSET_CACHE_KEY)


def _parse_date_header(value: str | None) -> int | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    millis = int(parsed.timestamp() * 1000)
    return millis if millis > 0 else None


def _local_millis() -> int:
    return time.time_ns() // 1_000_000
