"""commonkit: bounded TTL/LRU cache, snowflake ids and web time helpers."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - fallback only triggers when metadata missing
    __version__: str = version('commonkit')
except PackageNotFoundError:  # pragma: no cover
    __version__ = '0.1.0'

from .cache import LruCache  # noqa: E402
from .errors import (  # noqa: E402
    ClockMovedBackwardError,
    ClockWaitInterruptedError,
    CommonKitError,
    InvalidArgumentError,
)
from .snowflake import IdInfo, SnowflakeIdGenerator  # noqa: E402
from .server import create_server  # noqa: E402
from .webtime import WebTimeClient  # noqa: E402

__all__ = [
    'ClockMovedBackwardError',
    'ClockWaitInterruptedError',
    'CommonKitError',
    'IdInfo',
    'InvalidArgumentError',
    'LruCache',
    'SnowflakeIdGenerator',
    'WebTimeClient',
    'create_server',
    '__version__',
]
