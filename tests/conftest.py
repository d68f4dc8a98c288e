from dataclasses import dataclass, field
from typing import Callable

import httpx
import pytest

from commonkit.cache import LruCache
from commonkit.config import Config
from commonkit.server import create_server
from commonkit.snowflake import DEFAULT_EPOCH_MS, SnowflakeIdGenerator

Responder = Callable[[httpx.Request], httpx.Response]

# 2024-01-01T00:00:00Z
BASE_TIME_MS = 1704067200000


@dataclass
class FakeClock:
    """Millisecond clock that only moves when a test says so."""

    now: int = BASE_TIME_MS
    calls: int = 0

    def __call__(self) -> int:
        self.calls += 1
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


@dataclass
class MockTimeSites:
    responses: dict[str, Responder] = field(default_factory=dict)
    calls: list[httpx.Request] = field(default_factory=list)

    def add_date(self, host: str, date: str | None, status_code: int = 200) -> None:
        headers = {'Date': date} if date is not None else {}

        def responder(_: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code=status_code, headers=headers)

        self.responses[host] = responder

    def add_responder(self, host: str, responder: Responder) -> None:
        self.responses[host] = responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        responder = self.responses.get(request.url.host)
        if responder is None:
            raise httpx.ConnectError(f'Unreachable host {request.url.host}', request=request)
        return responder(request)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Config:
    return Config(
        cache_maxsize=32,
        cache_ttl=600,
        datacenter_id=3,
        worker_id=17,
        epoch_ms=DEFAULT_EPOCH_MS,
        max_clock_backward_ms=5000,
        time_sites=('https://time-a.test', 'https://time-b.test'),
        timeout=5.0,
        web_time_cache_ttl=60,
        user_agent='pytest-agent',
    )


@pytest.fixture
def time_sites() -> tuple[MockTimeSites, httpx.MockTransport]:
    sites = MockTimeSites()
    transport = httpx.MockTransport(sites.handler)
    return sites, transport


@pytest.fixture
def generator(config: Config, clock: FakeClock) -> SnowflakeIdGenerator:
    return SnowflakeIdGenerator(
        config.datacenter_id,
        config.worker_id,
        epoch_ms=config.epoch_ms,
        max_clock_backward_ms=config.max_clock_backward_ms,
        clock=clock,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def cache(clock: FakeClock) -> LruCache:
    return LruCache(maxsize=3, default_ttl=60, clock=clock)


@pytest.fixture
def commonkit_server(config: Config, time_sites, generator, cache):
    _, transport = time_sites
    return create_server(config=config, transport=transport, generator=generator, cache=cache)
