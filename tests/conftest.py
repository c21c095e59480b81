"""Shared fixtures for the admission tests.

fakeredis executes the real Lua scripts and MULTI/EXEC pipelines in memory,
so store behaviour is exercised without a Redis container.
"""

import fakeredis
import fakeredis.aioredis
import pytest
import pytest_asyncio

from admission.app.services.counter_store import CounterStore
from admission.app.services.rate_limit import RateLimitEngine

# 2023-11-14T22:14:00Z, aligned to whole minutes
START_MS = 1_700_000_040_000


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, now_ms: int = START_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest_asyncio.fixture
async def redis_client():
    """In-memory Redis with its own server per test."""
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def store(redis_client):
    return CounterStore(redis_client, key_prefix="test", timeout=1.0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(store, clock):
    return RateLimitEngine(store, clock=clock)


def static_key(identifier: str):
    """Key function returning a fixed identifier."""
    def _key(request):
        return identifier
    return _key
