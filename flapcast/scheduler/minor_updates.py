"""Minute-aligned minor update scheduler."""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Protocol

from flapcast.core.clock import Clock, utcnow
from flapcast.core.errors import CircuitStoreError, ConfigurationError
from flapcast.core.logging import get_logger
from flapcast.models.circuit import SLEEP_MODE_CIRCUIT, CircuitState
from flapcast.models.content import (
    GeneratedContent,
    GenerationRequest,
    OrchestratorResult,
    UpdateType,
)
from flapcast.observability.metrics import MINOR_UPDATES
from flapcast.observability.tracing import EventTrace

logger = get_logger(__name__)

MINOR_UPDATE_EVENT = "minor_update"


class Orchestrator(Protocol):
    @property
    def last_content(self) -> GeneratedContent | None: ...

    async def generate_and_send(self, request: GenerationRequest) -> OrchestratorResult: ...


class CircuitReader(Protocol):
    async def get_status(self, circuit_id: str): ...


def seconds_until_next_tick(now: datetime, interval: float = 60.0) -> float:
    """Delay until the next multiple of ``interval`` seconds on the wall clock.

    A time exactly on a boundary waits a full interval.
    """
    return interval - (now.timestamp() % interval)


class MinorUpdateScheduler:
    """Sends a minor update on every minute boundary.

    A run is skipped until the first major update has reached the display,
    and while the SLEEP_MODE circuit is on. An unreadable SLEEP_MODE
    circuit does not block the update. Failures are logged and the
    schedule keeps going.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        breaker: CircuitReader,
        interval_seconds: float = 60.0,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize scheduler.

        Args:
            orchestrator: Content orchestrator
            breaker: Circuit breaker engine, read for SLEEP_MODE
            interval_seconds: Tick length, aligned to the wall clock
            clock: Wall clock used for alignment and request timestamps
            sleep: Delay function used between ticks
        """
        self._orchestrator = orchestrator
        self._breaker = breaker
        self._interval = interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        """Start ticking. Safe to call when already started."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Minor update scheduler started", interval=self._interval)

    async def stop(self) -> None:
        """Stop ticking. Safe to call when not started."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Minor update scheduler stopped")

    async def run_once(self) -> OrchestratorResult | None:
        """Run one minor update.

        Returns:
            Orchestrator result, or None when the run was skipped or failed
        """
        if self._orchestrator.last_content is None:
            MINOR_UPDATES.labels(outcome="skipped_no_content").inc()
            logger.info("Minor update skipped, waiting for the first major update")
            return None

        if await self._sleeping():
            MINOR_UPDATES.labels(outcome="skipped_sleep_mode").inc()
            logger.info("Minor update skipped, sleep mode is on")
            return None

        request = GenerationRequest(update_type=UpdateType.MINOR, timestamp=self._clock())
        with EventTrace(MINOR_UPDATE_EVENT):
            try:
                result = await self._orchestrator.generate_and_send(request)
            except Exception as e:
                MINOR_UPDATES.labels(outcome="error").inc()
                logger.error("Minor update failed", error=str(e), exc_info=True)
                return None

            if result.blocked:
                MINOR_UPDATES.labels(outcome="blocked").inc()
                logger.info("Minor update blocked", block_reason=result.block_reason)
            elif not result.success:
                MINOR_UPDATES.labels(outcome="failed").inc()
                logger.warning("Minor update failed", error=result.error)
            else:
                MINOR_UPDATES.labels(outcome="sent").inc()
            return result

    async def _run(self) -> None:
        while True:
            await self._sleep(seconds_until_next_tick(self._clock(), self._interval))
            await self.run_once()

    async def _sleeping(self) -> bool:
        try:
            status = await self._breaker.get_status(SLEEP_MODE_CIRCUIT)
        except (CircuitStoreError, ConfigurationError) as e:
            logger.warning("Sleep mode check failed, proceeding with minor update", error=str(e))
            return False
        return status.state == CircuitState.ON
