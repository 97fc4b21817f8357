"""
Test configuration and fixtures.
"""

import fakeredis
import pytest

from threadstate import MemoryCheckpointStore, RedisCheckpointStore, StoreConfig

START = 1_700_000_000.0


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, start: float = START):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment settings out of StoreConfig()."""
    for name in (
        "USE_REDIS",
        "REDIS_URL",
        "REDIS_HOST",
        "REDIS_PORT",
        "REDIS_PASSWORD",
        "REDIS_DB",
        "REDIS_POOL_SIZE",
        "REDIS_KEY_PREFIX",
        "REDIS_TLS",
        "REDIS_SESSION_TTL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_server():
    """A private fakeredis server per test."""
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return fakeredis.FakeAsyncRedis(server=redis_server)


@pytest.fixture
def memory_store(clock):
    return MemoryCheckpointStore(clock=clock)


@pytest.fixture
def redis_store(redis_client, clock):
    return RedisCheckpointStore(config=StoreConfig(), client=redis_client, clock=clock)


@pytest.fixture(params=["memory", "redis"])
def store(request, clock):
    """Each store implementation, for contract tests."""
    if request.param == "memory":
        return MemoryCheckpointStore(clock=clock)
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
    return RedisCheckpointStore(config=StoreConfig(), client=client, clock=clock)
