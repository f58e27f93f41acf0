"""Tests for the minute-aligned minor update scheduler."""

import asyncio
from datetime import datetime, timezone

import pytest

from flapcast.core.errors import CircuitStoreError
from flapcast.models.circuit import SLEEP_MODE_CIRCUIT, CircuitState
from flapcast.models.content import (
    BlockReason,
    GeneratedContent,
    GenerationRequest,
    OrchestratorResult,
    UpdateType,
)
from flapcast.scheduler.minor_updates import MinorUpdateScheduler, seconds_until_next_tick


class FakeOrchestrator:
    def __init__(self, last_content: GeneratedContent | None = None, error: Exception | None = None):
        self.last_content = last_content
        self.error = error
        self.result = OrchestratorResult(success=True)
        self.requests: list[GenerationRequest] = []

    async def generate_and_send(self, request: GenerationRequest) -> OrchestratorResult:
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.result


class BrokenBreaker:
    async def get_status(self, circuit_id: str):
        raise CircuitStoreError("connection refused")


class TickingSleep:
    """Returns at once for the first ``ticks`` delays, then blocks."""

    def __init__(self, ticks: int):
        self.ticks = ticks
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) > self.ticks:
            await asyncio.Event().wait()


async def wait_until(condition, timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not condition():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout=timeout)


def sent_content() -> GeneratedContent:
    return GeneratedContent(text="MAKE TODAY COUNT")


@pytest.mark.parametrize(
    ("now", "expected"),
    [
        (datetime(2026, 1, 10, 14, 30, 15, 500000, tzinfo=timezone.utc), 44.5),
        (datetime(2026, 1, 10, 14, 30, 59, tzinfo=timezone.utc), 1.0),
        (datetime(2026, 1, 10, 14, 30, 0, tzinfo=timezone.utc), 60.0),
    ],
)
def test_seconds_until_next_tick(now: datetime, expected: float) -> None:
    assert seconds_until_next_tick(now) == pytest.approx(expected)


@pytest.mark.asyncio
async def test_skipped_until_first_major_update(engine) -> None:
    orchestrator = FakeOrchestrator()
    scheduler = MinorUpdateScheduler(orchestrator, engine)

    assert await scheduler.run_once() is None
    assert orchestrator.requests == []


@pytest.mark.asyncio
async def test_sends_minor_request(engine, clock) -> None:
    orchestrator = FakeOrchestrator(sent_content())
    scheduler = MinorUpdateScheduler(orchestrator, engine, clock=clock)

    result = await scheduler.run_once()

    assert result.success is True
    request = orchestrator.requests[0]
    assert request.update_type == UpdateType.MINOR
    assert request.timestamp == clock.now
    assert request.event_data is None


@pytest.mark.asyncio
async def test_sleep_mode_blocks_minor_updates(engine) -> None:
    orchestrator = FakeOrchestrator(sent_content())
    scheduler = MinorUpdateScheduler(orchestrator, engine)

    await engine.set_state(SLEEP_MODE_CIRCUIT, CircuitState.ON)
    assert await scheduler.run_once() is None
    assert orchestrator.requests == []

    await engine.set_state(SLEEP_MODE_CIRCUIT, CircuitState.OFF)
    assert (await scheduler.run_once()).success is True
    assert len(orchestrator.requests) == 1


@pytest.mark.asyncio
async def test_unreadable_sleep_mode_does_not_block() -> None:
    orchestrator = FakeOrchestrator(sent_content())
    scheduler = MinorUpdateScheduler(orchestrator, BrokenBreaker())

    assert (await scheduler.run_once()).success is True


@pytest.mark.asyncio
async def test_blocked_result_is_returned(engine) -> None:
    orchestrator = FakeOrchestrator(sent_content())
    orchestrator.result = OrchestratorResult(
        success=False,
        blocked=True,
        block_reason=BlockReason.MASTER_CIRCUIT_OFF,
    )
    scheduler = MinorUpdateScheduler(orchestrator, engine)

    result = await scheduler.run_once()

    assert result.blocked is True
    assert result.block_reason == BlockReason.MASTER_CIRCUIT_OFF


@pytest.mark.asyncio
async def test_orchestrator_error_does_not_escape(engine) -> None:
    orchestrator = FakeOrchestrator(sent_content(), error=RuntimeError("boom"))
    scheduler = MinorUpdateScheduler(orchestrator, engine)

    assert await scheduler.run_once() is None
    assert len(orchestrator.requests) == 1


@pytest.mark.asyncio
async def test_start_ticks_on_minute_boundaries_and_stops(engine, clock) -> None:
    clock.advance(15)
    orchestrator = FakeOrchestrator(sent_content())
    sleep = TickingSleep(ticks=2)
    scheduler = MinorUpdateScheduler(orchestrator, engine, clock=clock, sleep=sleep)

    scheduler.start()
    scheduler.start()
    await wait_until(lambda: len(sleep.delays) == 3)

    assert len(orchestrator.requests) == 2
    assert sleep.delays[0] == pytest.approx(45.0)
    assert scheduler.is_running is True

    await scheduler.stop()
    await scheduler.stop()

    assert scheduler.is_running is False
    assert len(orchestrator.requests) == 2
