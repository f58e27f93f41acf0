"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import AsyncIterator

import fakeredis
import pytest
import pytest_asyncio

from flapcast.breaker.engine import CircuitBreakerEngine
from flapcast.models.circuit import default_circuits
from flapcast.storage.circuit_store import CircuitStore


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 10, 14, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeMonotonic:
    """Settable monotonic clock in seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest_asyncio.fixture
async def redis() -> AsyncIterator[fakeredis.FakeAsyncRedis]:
    """In-memory Redis with its own server per test."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def circuit_store(redis, clock) -> CircuitStore:
    return CircuitStore(redis, clock=clock)


@pytest_asyncio.fixture
async def engine(circuit_store, clock) -> CircuitBreakerEngine:
    """Engine seeded with MASTER, PROVIDER_OPENAI and PROVIDER_ANTHROPIC."""
    engine = CircuitBreakerEngine(
        circuit_store,
        reset_timeout_seconds=300,
        half_open_successes=1,
        clock=clock,
    )
    await engine.initialize(default_circuits(["openai", "anthropic"], failure_threshold=5))
    return engine
