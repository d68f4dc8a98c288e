"""FastMCP server exposing the id generator, cache and web time as tools."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Annotated, Any, Awaitable, Callable

import httpx
from fastmcp import FastMCP
from pydantic import Field

from commonkit.cache import LruCache
from commonkit.config import Config
from commonkit.snowflake import SnowflakeIdGenerator
from commonkit.webtime import WebTimeClient

MAX_BATCH_SIZE = 1000

CountParam = Annotated[
    int,
    Field(ge=1, le=MAX_BATCH_SIZE, description='Number of ids to generate in one call.'),
]
SnowflakeParam = Annotated[
    int,
    Field(description='A 64-bit snowflake id as returned by snowflake_next_id.'),
]
TtlParam = Annotated[
    int | None,
    Field(description='Entry lifetime in seconds. Defaults to the configured cache TTL.'),
]


def create_server(
    config: Config | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    generator: SnowflakeIdGenerator | None = None,
    cache: LruCache[Any] | None = None,
) -> FastMCP:
    """Create and configure the commonkit FastMCP server.

    Args:
        config: Configuration instance. If None, will be created from environment.
        transport: Custom HTTP transport for the web time lookups (testing).
        generator: Id generator to serve. Built from ``config`` if None.
        cache: Key/value cache to serve. Built from ``config`` if None.

    Returns:
        Configured FastMCP server instance ready to serve MCP clients.

    Example:
        >>> server = create_server()
        >>> server.run()
    """

    config = config or Config.from_env()
    generator = generator or SnowflakeIdGenerator.from_config(config)
    if cache is None:
        cache = LruCache(config.cache_maxsize, default_ttl=config.cache_ttl)
    web_time = WebTimeClient(config, transport=transport)

    mcp = FastMCP(name='commonkit')

    def register_tool(
        *,
        name: str,
        description: str,
        read_only: bool = False,
    ) -> Callable[
        [Callable[..., Awaitable[dict[str, Any]]]], Callable[..., Awaitable[dict[str, Any]]]
    ]:
        def decorator(
            func: Callable[..., Awaitable[dict[str, Any]]],
        ) -> Callable[..., Awaitable[dict[str, Any]]]:
            return mcp.tool(
                name=name,
                description=description,
                annotations={'readOnlyHint': read_only, 'idempotentHint': read_only},
            )(func)

        return decorator

    @register_tool(
        name='snowflake_next_id',
        description='Generate one unique, time-ordered 64-bit snowflake id.',
    )
    async def snowflake_next_id() -> dict[str, Any]:
        # next_id can wait out a clock rollback; keep it off the event loop.
        return {'id': await asyncio.to_thread(generator.next_id)}

    @register_tool(
        name='snowflake_next_ids',
        description='Generate a batch of unique, strictly increasing snowflake ids.',
    )
    async def snowflake_next_ids(count: CountParam) -> dict[str, Any]:
        return {'ids': await asyncio.to_thread(generator.next_ids, count)}

    @register_tool(
        name='snowflake_parse_id',
        description=(
            'Decode a snowflake id into its timestamp, datacenter id, worker id '
            'and per-millisecond sequence.'
        ),
        read_only=True,
    )
    async def snowflake_parse_id(id: SnowflakeParam) -> dict[str, Any]:
        return generator.parse_id(id).to_dict()

    @register_tool(
        name='cache_put',
        description=(
            'Store a JSON value under a key with an optional TTL. When the cache '
            'is full the least recently used key is evicted.'
        ),
    )
    async def cache_put(key: str, value: Any, ttl_seconds: TtlParam = None) -> dict[str, Any]:
        await asyncio.to_thread(cache.put, key, value, ttl_seconds)
        return {'key': key, 'size': cache.size()}

    @register_tool(
        name='cache_get',
        description='Read a cached value. Missing and expired keys report found=false.',
    )
    async def cache_get(key: str) -> dict[str, Any]:
        value = await asyncio.to_thread(cache.get, key)
        return {'key': key, 'found': value is not None, 'value': value}

    @register_tool(
        name='cache_remove',
        description='Delete a key from the cache. Removing a missing key is not an error.',
    )
    async def cache_remove(key: str) -> dict[str, Any]:
        await asyncio.to_thread(cache.remove, key)
        return {'key': key, 'size': cache.size()}

    @register_tool(
        name='web_time_now',
        description=(
            'Current time read from public web servers (HTTP Date header), with '
            'the skew against the local clock. Falls back to local time.'
        ),
        read_only=True,
    )
    async def web_time_now() -> dict[str, Any]:
        timestamp, skew = await web_time.now()
        return {
            'timestamp': timestamp,
            'datetime': datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).isoformat(),
            'skew_ms': skew,
        }

    return mcp
