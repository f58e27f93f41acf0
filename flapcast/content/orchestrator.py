"""Generate-and-send orchestration behind the circuit breaker."""

import asyncio
import uuid
from typing import Awaitable, Callable, Protocol

from flapcast.breaker.engine import CircuitBreakerEngine
from flapcast.content.generators import GeneratorRegistry, GeneratorSpec, generate_content
from flapcast.content.retry import RetryConfig, generate_with_retry
from flapcast.core.clock import Clock, utcnow
from flapcast.core.errors import (
    CircuitStoreError,
    ConfigurationError,
    DisplayError,
    ProviderError,
    RetryExhaustedError,
)
from flapcast.core.logging import get_logger
from flapcast.display.characters import text_to_layout
from flapcast.models.circuit import MASTER_CIRCUIT, CircuitState, provider_circuit_id
from flapcast.models.content import (
    BlockReason,
    CircuitSnapshot,
    ContentRecord,
    ContentStatus,
    GeneratedContent,
    GenerationRequest,
    OrchestratorResult,
    OutputMode,
)
from flapcast.observability.metrics import GENERATIONS
from flapcast.providers.base import AIProvider
from flapcast.storage.history_store import ContentHistoryStore

logger = get_logger(__name__)


class Display(Protocol):
    async def send_layout(self, layout: list[list[int]]) -> None: ...


class ContentOrchestrator:
    """Runs one generate-and-send cycle.

    The MASTER circuit is checked before anything else; provider circuits
    gate every provider attempt. Blocked requests are results, not errors.
    """

    def __init__(
        self,
        breaker: CircuitBreakerEngine,
        registry: GeneratorRegistry,
        preferred_provider: AIProvider,
        display: Display,
        alternate_provider: AIProvider | None = None,
        history: ContentHistoryStore | None = None,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Clock = utcnow,
    ):
        """Initialize orchestrator.

        Args:
            breaker: Circuit breaker engine
            registry: Generator registry
            preferred_provider: Provider tried first
            display: Display client
            alternate_provider: Failover provider
            history: Content history store (optional)
            retry_config: Provider retry schedule
            sleep: Delay function used for retry backoff
            clock: Time source for history records
        """
        self._breaker = breaker
        self._registry = registry
        self._preferred = preferred_provider
        self._alternate = alternate_provider
        self._display = display
        self._history = history
        self._retry_config = retry_config or RetryConfig()
        self._sleep = sleep
        self._clock = clock
        self._last_content: GeneratedContent | None = None

    @property
    def last_content(self) -> GeneratedContent | None:
        """Content most recently sent to the display."""
        return self._last_content

    @property
    def provider_circuit_ids(self) -> list[str]:
        providers = [self._preferred] + ([self._alternate] if self._alternate else [])
        return list(dict.fromkeys(provider_circuit_id(p.name) for p in providers))

    async def generate_and_send(self, request: GenerationRequest) -> OrchestratorResult:
        """Generate content for a request and send it to the display.

        Args:
            request: Generation request

        Returns:
            Orchestrator result; blocked requests carry ``block_reason``
        """
        log = logger.bind(update_type=request.update_type.value)

        try:
            master_on = await self._breaker.can_attempt(MASTER_CIRCUIT)
        except ConfigurationError as e:
            log.error("MASTER circuit missing", error=str(e))
            return await self._failed(request, None, str(e))

        if not master_on:
            log.info("Generation blocked", block_reason=BlockReason.MASTER_CIRCUIT_OFF.value)
            return await self._blocked(request, BlockReason.MASTER_CIRCUIT_OFF, master=False)

        try:
            spec = self._registry.select(request)
        except ConfigurationError as e:
            log.error("No generator for request", error=str(e))
            return await self._failed(request, None, str(e))

        log = log.bind(generator_id=spec.id)

        try:
            content = await self._generate(spec, request)
        except RetryExhaustedError as e:
            if e.all_circuits_open:
                log.warning("Generation blocked", block_reason=BlockReason.PROVIDER_UNAVAILABLE.value)
                return await self._blocked(request, BlockReason.PROVIDER_UNAVAILABLE, master=True)
            log.error("Generation failed", error=str(e), attempts=len(e.attempts))
            return await self._failed(request, spec, str(e))
        except (ProviderError, ConfigurationError) as e:
            log.error("Generation failed", error_type=type(e).__name__, error=str(e))
            return await self._failed(request, spec, str(e))

        if content.output_mode == OutputMode.LAYOUT and content.layout:
            layout = content.layout
        else:
            layout = text_to_layout(content.text)

        try:
            await self._display.send_layout(layout)
        except DisplayError as e:
            log.error("Display update failed", error_type=type(e).__name__, error=str(e))
            return await self._failed(request, spec, str(e), content=content)

        self._last_content = content
        failover = content.metadata.get("failover") or {}
        log.info(
            "Content sent",
            provider=failover.get("final_provider"),
            failed_over=failover.get("failed_over", False),
        )
        GENERATIONS.labels(outcome="success").inc()

        await self._record(
            request,
            ContentStatus.SUCCESS,
            spec=spec,
            content=content,
            sent=True,
        )
        return OrchestratorResult(
            success=True,
            content=content,
            circuit_state=await self._snapshot(master=True),
        )

    async def _generate(self, spec: GeneratorSpec, request: GenerationRequest) -> GeneratedContent:
        if not spec.requires_ai:
            return await generate_content(spec, request)

        return await generate_with_retry(
            lambda provider: generate_content(spec, request, provider),
            preferred=self._preferred,
            alternate=self._alternate,
            breaker=self._breaker,
            config=self._retry_config,
            sleep=self._sleep,
        )

    async def _blocked(
        self,
        request: GenerationRequest,
        reason: BlockReason,
        master: bool,
    ) -> OrchestratorResult:
        GENERATIONS.labels(outcome=f"blocked_{reason.value}").inc()
        await self._record(request, ContentStatus.BLOCKED, block_reason=reason)
        return OrchestratorResult(
            success=False,
            blocked=True,
            block_reason=reason,
            circuit_state=await self._snapshot(master=master),
        )

    async def _failed(
        self,
        request: GenerationRequest,
        spec: GeneratorSpec | None,
        error: str,
        content: GeneratedContent | None = None,
    ) -> OrchestratorResult:
        GENERATIONS.labels(outcome="failed").inc()
        await self._record(request, ContentStatus.FAILED, spec=spec, content=content, error=error)
        return OrchestratorResult(
            success=False,
            content=content,
            error=error,
            circuit_state=await self._snapshot(),
        )

    async def _snapshot(self, master: bool | None = None) -> CircuitSnapshot | None:
        # Diagnostics only; never fails the request
        try:
            if master is None:
                master = (await self._breaker.get_status(MASTER_CIRCUIT)).state == CircuitState.ON
            providers = {}
            for circuit_id in self.provider_circuit_ids:
                providers[circuit_id] = (await self._breaker.get_status(circuit_id)).state
        except (CircuitStoreError, ConfigurationError) as e:
            logger.warning("Circuit snapshot unavailable", error=str(e))
            return CircuitSnapshot(master=bool(master)) if master is not None else None
        return CircuitSnapshot(master=master, providers=providers)

    async def _record(
        self,
        request: GenerationRequest,
        status: ContentStatus,
        spec: GeneratorSpec | None = None,
        content: GeneratedContent | None = None,
        block_reason: BlockReason | None = None,
        error: str | None = None,
        sent: bool = False,
    ) -> None:
        if self._history is None:
            return

        failover = (content.metadata.get("failover") if content else None) or {}
        now = self._clock()
        record = ContentRecord(
            record_id=uuid.uuid4().hex,
            status=status,
            update_type=request.update_type,
            text=content.text if content else "",
            generator_id=spec.id if spec else None,
            provider=failover.get("final_provider"),
            failed_over=failover.get("failed_over", False),
            block_reason=block_reason,
            error=error,
            generated_at=now,
            sent_at=now if sent else None,
        )
        await self._history.record(record)
