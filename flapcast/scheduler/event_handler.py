"""Bridges Home Assistant events to content generation."""

import asyncio
from typing import Any, Callable, Coroutine, Protocol

from flapcast.core.logging import get_logger
from flapcast.engine.trigger_matcher import TriggerMatcher
from flapcast.models.content import GenerationRequest, OrchestratorResult, UpdateType
from flapcast.models.event import HAEvent
from flapcast.observability.metrics import EVENT_HANDLER_ERRORS, EVENTS_RECEIVED, TRIGGER_MATCHES
from flapcast.observability.tracing import EventTrace

logger = get_logger(__name__)

STATE_CHANGED_EVENT = "state_changed"


class EventSource(Protocol):
    async def subscribe_to_events(self, event_type: str, callback: Callable[[HAEvent], None]) -> None: ...

    async def disconnect(self) -> None: ...


class Orchestrator(Protocol):
    async def generate_and_send(self, request: GenerationRequest) -> OrchestratorResult: ...


class EventHandler:
    """Routes refresh and state-change events into generate-and-send.

    Refresh events always generate. State changes go through the trigger
    matcher and generate only on a match outside the debounce window.
    Generation runs in background tasks so a slow cycle never blocks the
    event source, and no error escapes an event callback.
    """

    SHUTDOWN_GRACE_SECONDS = 10.0

    def __init__(
        self,
        event_source: EventSource,
        orchestrator: Orchestrator,
        trigger_matcher: TriggerMatcher | None = None,
        refresh_event: str = "vestaboard_refresh",
    ):
        """Initialize handler.

        Args:
            event_source: Event source to subscribe to
            orchestrator: Content orchestrator
            trigger_matcher: Matcher for state changes; None disables them
            refresh_event: Event type that forces a major refresh
        """
        self._event_source = event_source
        self._orchestrator = orchestrator
        self._trigger_matcher = trigger_matcher
        self._refresh_event = refresh_event
        self._state_subscribed = False
        self._tasks: set[asyncio.Task] = set()
        self._shut_down = False

    @property
    def trigger_matcher(self) -> TriggerMatcher | None:
        return self._trigger_matcher

    async def initialize(self) -> None:
        """Subscribe to the refresh event, and to state changes if a matcher is set."""
        await self._event_source.subscribe_to_events(self._refresh_event, self._on_refresh)
        logger.info("Subscribed to refresh events", event_type=self._refresh_event)

        if self._trigger_matcher is not None:
            await self._subscribe_state_changes()

    async def update_trigger_matcher(self, trigger_matcher: TriggerMatcher | None) -> None:
        """Swap the trigger matcher.

        The previous matcher's debounce state is discarded. None disables
        state-change generation without unsubscribing.
        """
        previous, self._trigger_matcher = self._trigger_matcher, trigger_matcher
        if previous is not None and previous is not trigger_matcher:
            previous.cleanup()

        if trigger_matcher is not None and not self._state_subscribed and not self._shut_down:
            await self._subscribe_state_changes()

        logger.info(
            "Trigger matcher updated",
            enabled=trigger_matcher is not None,
            triggers=trigger_matcher.trigger_names if trigger_matcher else [],
        )

    async def shutdown(self) -> None:
        """Stop handling events. Safe to call more than once or before initialize."""
        if self._shut_down:
            return
        self._shut_down = True

        if self._trigger_matcher is not None:
            self._trigger_matcher.cleanup()

        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=self.SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        try:
            await self._event_source.disconnect()
        except Exception as e:
            logger.warning("Event source disconnect failed", error=str(e))

        logger.info("Event handler shut down")

    async def wait_idle(self) -> None:
        """Wait for in-flight generation tasks."""
        while self._tasks:
            await asyncio.gather(*set(self._tasks), return_exceptions=True)

    async def _subscribe_state_changes(self) -> None:
        await self._event_source.subscribe_to_events(STATE_CHANGED_EVENT, self._on_state_changed)
        self._state_subscribed = True
        logger.info("Subscribed to state changes")

    def _on_refresh(self, event: HAEvent) -> None:
        EVENTS_RECEIVED.labels(event_type=event.event_type).inc()
        if self._shut_down:
            return

        logger.info("Refresh requested", event_type=event.event_type)
        request = GenerationRequest(update_type=UpdateType.MAJOR, event_data=event.data)
        self._spawn(self._generate(request, event.event_type))

    def _on_state_changed(self, event: HAEvent) -> None:
        EVENTS_RECEIVED.labels(event_type=event.event_type).inc()
        matcher = self._trigger_matcher
        if self._shut_down or matcher is None:
            return

        try:
            entity_id = event.entity_id
            new_state = event.new_state
            if entity_id is None or new_state is None:
                return

            result = matcher.match(entity_id, new_state)
            if not result.matched:
                return

            trigger = result.trigger
            if result.debounced:
                TRIGGER_MATCHES.labels(trigger=trigger.name, outcome="debounced").inc()
                logger.debug("Trigger debounced", trigger=trigger.name, entity_id=entity_id)
                return

            TRIGGER_MATCHES.labels(trigger=trigger.name, outcome="fired").inc()
            logger.info(
                "Trigger fired",
                trigger=trigger.name,
                entity_id=entity_id,
                new_state=new_state,
            )
            request = GenerationRequest(
                update_type=UpdateType.MAJOR,
                event_data={**event.data, "trigger": trigger.name},
            )
            self._spawn(self._generate(request, event.event_type))
        except Exception as e:
            EVENT_HANDLER_ERRORS.labels(event_type=event.event_type).inc()
            logger.error("State change handling failed", error=str(e), exc_info=True)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _generate(self, request: GenerationRequest, event_type: str) -> None:
        trigger = (request.event_data or {}).get("trigger")
        with EventTrace(event_type, trigger=trigger):
            try:
                result = await self._orchestrator.generate_and_send(request)
            except Exception as e:
                EVENT_HANDLER_ERRORS.labels(event_type=event_type).inc()
                logger.error("Generate and send failed", error=str(e), exc_info=True)
                return

            if result.blocked:
                logger.info("Update skipped", block_reason=result.block_reason)
            elif not result.success:
                logger.warning("Update failed", error=result.error)
