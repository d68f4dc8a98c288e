"""Configuration handling for commonkit."""

from __future__ import annotations

from os import environ
from dataclasses import dataclass, field
from typing import TypeVar
from urllib.parse import urlparse

from commonkit import __version__
from commonkit.snowflake import (
    DEFAULT_EPOCH_MS,
    DEFAULT_MAX_CLOCK_BACKWARD_MS,
    MAX_DATACENTER_ID,
    MAX_WORKER_ID,
)

DEFAULT_CACHE_MAXSIZE = 1024
DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_TIME_SITES = (
    'https://www.baidu.com',
    'https://www.taobao.com',
    'https://httpbin.org/get',
)
DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_WEB_TIME_CACHE_TTL_SECONDS = 60


@dataclass(slots=True)
class Config:
    """Configuration settings for commonkit components.

    Environment Variables:
        COMMONKIT_CACHE_MAXSIZE: Cache capacity in entries (default: 1024)
        COMMONKIT_CACHE_TTL: Default entry lifetime in seconds (default: 3600)
        COMMONKIT_DATACENTER_ID: Snowflake datacenter id, 0-31 (default: 0)
        COMMONKIT_WORKER_ID: Snowflake worker id, 0-31 (default: random)
        COMMONKIT_EPOCH_MS: Snowflake epoch in ms (default: 2022-01-01T00:00:00Z)
        COMMONKIT_MAX_CLOCK_BACKWARD_MS: Tolerated clock rollback (default: 5000)
        COMMONKIT_TIME_SITES: Comma-separated URLs queried for web time
        COMMONKIT_TIMEOUT: HTTP timeout in seconds (default: 5.0)
        COMMONKIT_WEB_TIME_CACHE_TTL: Seconds a measured clock offset is reused (default: 60)
        COMMONKIT_USER_AGENT: Custom User-Agent header

    Example:
        >>> config = Config.from_env()
        >>>
        >>> config = Config(datacenter_id=2, worker_id=7, cache_maxsize=256)
    """

    cache_maxsize: int = DEFAULT_CACHE_MAXSIZE
    cache_ttl: int = DEFAULT_CACHE_TTL_SECONDS
    datacenter_id: int = 0
    worker_id: int | None = None
    epoch_ms: int = DEFAULT_EPOCH_MS
    max_clock_backward_ms: int = DEFAULT_MAX_CLOCK_BACKWARD_MS
    time_sites: tuple[str, ...] = field(default=DEFAULT_TIME_SITES)
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    web_time_cache_ttl: int = DEFAULT_WEB_TIME_CACHE_TTL_SECONDS
    user_agent: str = f'commonkit/{__version__}'

    @classmethod
    def from_env(cls) -> Config:
        """Create a configuration instance from environment variables.

        Unparseable or below-minimum values fall back to their defaults.

        Raises:
            ValueError: If the resulting configuration is invalid.
        """

        cache_maxsize = int(
            _read_number('COMMONKIT_CACHE_MAXSIZE', int, DEFAULT_CACHE_MAXSIZE, minimum=1)
        )
        cache_ttl = int(_read_number('COMMONKIT_CACHE_TTL', int, DEFAULT_CACHE_TTL_SECONDS))
        datacenter_id = int(_read_number('COMMONKIT_DATACENTER_ID', int, 0, minimum=0))
        worker_id = _read_optional_int('COMMONKIT_WORKER_ID')
        epoch_ms = int(_read_number('COMMONKIT_EPOCH_MS', int, DEFAULT_EPOCH_MS, minimum=0))
        max_clock_backward_ms = int(
            _read_number(
                'COMMONKIT_MAX_CLOCK_BACKWARD_MS', int, DEFAULT_MAX_CLOCK_BACKWARD_MS, minimum=0
            )
        )
        timeout = _read_number('COMMONKIT_TIMEOUT', float, DEFAULT_TIMEOUT_SECONDS)
        web_time_cache_ttl = int(
            _read_number(
                'COMMONKIT_WEB_TIME_CACHE_TTL', int, DEFAULT_WEB_TIME_CACHE_TTL_SECONDS, minimum=0
            )
        )

        raw_sites = environ.get('COMMONKIT_TIME_SITES', '')
        time_sites = tuple(site.strip() for site in raw_sites.split(',') if site.strip())

        user_agent = environ.get('COMMONKIT_USER_AGENT') or f'commonkit/{__version__}'

        return cls(
            cache_maxsize=cache_maxsize,
            cache_ttl=cache_ttl,
            datacenter_id=datacenter_id,
            worker_id=worker_id,
            epoch_ms=epoch_ms,
            max_clock_backward_ms=max_clock_backward_ms,
            time_sites=time_sites or DEFAULT_TIME_SITES,
            timeout=timeout,
            web_time_cache_ttl=web_time_cache_ttl,
            user_agent=user_agent,
        )._validate()

    def _validate(self) -> Config:
        """Validate all configuration values.

        Returns:
            Self for method chaining.

        Raises:
            ValueError: If any configuration value is invalid.
        """
        if self.cache_maxsize < 1:
            raise ValueError(f'cache_maxsize must be at least 1: {self.cache_maxsize}')
        if not 0 <= self.datacenter_id <= MAX_DATACENTER_ID:
            raise ValueError(
                f'datacenter_id must be between 0 and {MAX_DATACENTER_ID}: {self.datacenter_id}'
            )
        if self.worker_id is not None and not 0 <= self.worker_id <= MAX_WORKER_ID:
            raise ValueError(
                f'worker_id must be between 0 and {MAX_WORKER_ID}: {self.worker_id}'
            )
        if self.epoch_ms < 0:
            raise ValueError(f'epoch_ms must be non-negative: {self.epoch_ms}')
        if self.max_clock_backward_ms < 0:
            raise ValueError(
                f'max_clock_backward_ms must be non-negative: {self.max_clock_backward_ms}'
            )
        if self.timeout <= 0:
            raise ValueError(f'timeout must be positive: {self.timeout}')
        if self.web_time_cache_ttl < 0:
            raise ValueError(f'web_time_cache_ttl must be non-negative: {self.web_time_cache_ttl}')

        # Validate every time site is an http(s) URL
        for site in self.time_sites:
            parsed = urlparse(site)
            if not parsed.scheme or not parsed.netloc:
                raise ValueError(f'Invalid time site: {site}')
            if parsed.scheme not in ('http', 'https'):
                raise ValueError(f'time site must use http or https scheme: {site}')

        return self


T = TypeVar('T', bound=float | int)


def _read_number(
    name: str,
    cast: type[T],
    default: T,
    *,
    minimum: T | None = None,
) -> T:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _read_optional_int(name: str) -> int | None:
    raw = environ.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None
