import asyncio

import pytest
from fastmcp import Client
from fastmcp.exceptions import ToolError

from commonkit.cache import LruCache
from commonkit.server import create_server
from commonkit.snowflake import SnowflakeIdGenerator

pytestmark = pytest.mark.asyncio


async def test_next_id_tool_returns_parseable_id(commonkit_server, generator) -> None:
    async with Client(commonkit_server) as client:
        result = await client.call_tool('snowflake_next_id', {})

    info = generator.parse_id(result.data['id'])
    assert info.datacenter_id == 3
    assert info.worker_id == 17


async def test_next_ids_tool_returns_increasing_batch(commonkit_server) -> None:
    async with Client(commonkit_server) as client:
        result = await client.call_tool('snowflake_next_ids', {'count': 25})

    ids = result.data['ids']
    assert len(ids) == 25
    assert ids == sorted(set(ids))


async def test_next_ids_tool_rejects_oversized_batch(commonkit_server) -> None:
    async with Client(commonkit_server) as client:
        with pytest.raises(ToolError, match='count'):
            await client.call_tool('snowflake_next_ids', {'count': 5000})


async def test_parse_id_tool_decodes_fields(commonkit_server, generator, clock) -> None:
    snowflake_id = generator.next_id()

    async with Client(commonkit_server) as client:
        result = await client.call_tool('snowflake_parse_id', {'id': snowflake_id})

    assert result.data['id'] == snowflake_id
    assert result.data['timestamp'] == clock.now
    assert result.data['datacenter_id'] == 3
    assert result.data['worker_id'] == 17
    assert result.data['sequence'] == 0
    assert result.data['datetime'].startswith('2024-01-01T00:00:00')


async def test_cache_tools_round_trip(commonkit_server) -> None:
    async with Client(commonkit_server) as client:
        put = await client.call_tool('cache_put', {'key': 'user:1', 'value': {'name': 'Ada'}})
        hit = await client.call_tool('cache_get', {'key': 'user:1'})
        removed = await client.call_tool('cache_remove', {'key': 'user:1'})
        miss = await client.call_tool('cache_get', {'key': 'user:1'})

    assert put.data['size'] == 1
    assert hit.data['found'] is True
    assert hit.data['value'] == {'name': 'Ada'}
    assert removed.data['size'] == 0
    assert miss.data['found'] is False
    assert miss.data['value'] is None


async def test_cache_put_tool_honours_ttl(commonkit_server, cache: LruCache, clock) -> None:
    async with Client(commonkit_server) as client:
        await client.call_tool('cache_put', {'key': 'k', 'value': 'v', 'ttl_seconds': 1})
        clock.advance(1_001)
        result = await client.call_tool('cache_get', {'key': 'k'})

    assert result.data['found'] is False
    assert cache.size() == 0


async def test_cache_tools_evict_least_recently_used(commonkit_server) -> None:
    async with Client(commonkit_server) as client:
        for key in ('a', 'b', 'c'):
            await client.call_tool('cache_put', {'key': key, 'value': key})
        await client.call_tool('cache_get', {'key': 'a'})
        await client.call_tool('cache_put', {'key': 'd', 'value': 'd'})
        evicted = await client.call_tool('cache_get', {'key': 'b'})
        kept = await client.call_tool('cache_get', {'key': 'a'})

    assert evicted.data['found'] is False
    assert kept.data['value'] == 'a'


async def test_web_time_tool_reports_skew(commonkit_server, time_sites) -> None:
    sites, _ = time_sites
    sites.add_date('time-a.test', 'Mon, 01 Jan 2024 00:00:10 GMT')

    async with Client(commonkit_server) as client:
        result = await client.call_tool('web_time_now', {})

    assert result.data['skew_ms'] is not None
    assert result.data['timestamp'] > 0
    assert len(sites.calls) == 1


async def test_web_time_tool_falls_back_to_local_clock(config, time_sites, generator) -> None:
    _, transport = time_sites
    server = create_server(config=config, transport=transport, generator=generator)

    async with Client(server) as client:
        result = await client.call_tool('web_time_now', {})

    assert result.data['skew_ms'] is None
    assert result.data['timestamp'] > 0


async def test_server_builds_components_from_config(config) -> None:
    server = create_server(config=config)

    async with Client(server) as client:
        tools = {tool.name for tool in await client.list_tools()}
        result = await client.call_tool('snowflake_next_id', {})

    assert tools == {
        'snowflake_next_id',
        'snowflake_next_ids',
        'snowflake_parse_id',
        'cache_put',
        'cache_get',
        'cache_remove',
        'web_time_now',
    }
    info = SnowflakeIdGenerator(3, 17).parse_id(result.data['id'])
    assert (info.datacenter_id, info.worker_id) == (3, 17)


async def test_next_id_tool_does_not_block_event_loop(config, time_sites, clock) -> None:
    """A clock-rollback wait inside next_id must leave other tasks running."""
    _, transport = time_sites
    generator = SnowflakeIdGenerator(3, 17, clock=clock)
    generator.next_id()
    # Roll the clock back so the next id waits ~300ms for it to catch up.
    clock.advance(-300)
    server = create_server(config=config, transport=transport, generator=generator)

    ticks = 0
    done = asyncio.Event()

    async def ticker() -> None:
        nonlocal ticks
        while not done.is_set():
            ticks += 1
            await asyncio.sleep(0.01)

    async with Client(server) as client:
        task = asyncio.create_task(ticker())
        result = await client.call_tool('snowflake_next_id', {})
        done.set()
        await task

    # Roughly 30 ticks fit in the wait; a blocked loop manages one or two.
    assert ticks > 10
    assert generator.parse_id(result.data['id']).sequence == 1
