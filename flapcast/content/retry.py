"""Provider retry and failover gated by provider circuits."""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from flapcast.breaker.engine import CircuitBreakerEngine
from flapcast.core.clock import utcnow
from flapcast.core.config import Settings
from flapcast.core.errors import CircuitStoreError, FailedAttempt, ProviderError, RetryExhaustedError
from flapcast.core.logging import get_logger
from flapcast.models.circuit import provider_circuit_id
from flapcast.models.content import GeneratedContent
from flapcast.observability.metrics import PROVIDER_ATTEMPTS
from flapcast.providers.base import AIProvider

logger = get_logger(__name__)

ProviderCall = Callable[[AIProvider], Awaitable[GeneratedContent]]


@dataclass
class RetryConfig:
    """Retry schedule shared by all providers."""

    attempts_per_provider: int = 2
    backoff_base: float = 1.0
    backoff_multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryConfig":
        return cls(
            attempts_per_provider=settings.retry_attempts_per_provider,
            backoff_base=settings.retry_backoff_base_seconds,
            backoff_multiplier=settings.retry_backoff_multiplier,
        )

    def backoff(self, attempt_number: int) -> float:
        """Delay before the given overall attempt (1-based). The first attempt has none."""
        if attempt_number <= 1:
            return 0.0
        return self.backoff_base * self.backoff_multiplier ** (attempt_number - 2)


async def generate_with_retry(
    call: ProviderCall,
    preferred: AIProvider,
    alternate: AIProvider | None = None,
    breaker: CircuitBreakerEngine | None = None,
    config: RetryConfig | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> GeneratedContent:
    """Run a provider call with retries, failing over to the alternate provider.

    Each provider gets ``attempts_per_provider`` attempts. Before every
    attempt the provider circuit is consulted; an open circuit skips the
    rest of that provider's attempts. Every attempt outcome is reported to
    the circuit. Retryable errors move on to the next attempt; permanent
    errors are raised at once.

    Args:
        call: Generates content with the given provider
        preferred: Provider tried first
        alternate: Provider tried after the preferred one
        breaker: Circuit breaker gating the providers
        config: Retry schedule
        sleep: Delay function used for backoff

    Returns:
        Generated content with failover details in ``metadata["failover"]``

    Raises:
        RetryExhaustedError: All attempts failed; ``attempts`` is empty when
            every provider circuit was open
        ProviderError: A permanent provider error, or an unexpected failure of ``call``
    """
    config = config or RetryConfig()
    providers = [preferred]
    if alternate is not None and alternate.name != preferred.name:
        providers.append(alternate)

    failed: list[FailedAttempt] = []
    skipped: list[str] = []
    attempts_made = 0
    start_time = time.monotonic()

    for index, provider in enumerate(providers):
        circuit_id = provider_circuit_id(provider.name)

        for attempt in range(1, config.attempts_per_provider + 1):
            if breaker and not await breaker.can_attempt(circuit_id):
                logger.info("Provider circuit open, skipping", provider=provider.name)
                PROVIDER_ATTEMPTS.labels(provider=provider.name, outcome="skipped").inc()
                skipped.append(provider.name)
                break

            attempts_made += 1
            delay = config.backoff(attempts_made)
            if delay:
                await sleep(delay)

            try:
                content = await _call_provider(call, provider)
            except ProviderError as e:
                failed.append(
                    FailedAttempt(provider=provider.name, attempt=attempt, error=e, timestamp=utcnow())
                )
                await _report_failure(breaker, circuit_id, e)

                if not e.retryable:
                    PROVIDER_ATTEMPTS.labels(provider=provider.name, outcome="permanent_error").inc()
                    logger.error(
                        "Provider call failed permanently",
                        provider=provider.name,
                        attempt=attempt,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    raise

                PROVIDER_ATTEMPTS.labels(provider=provider.name, outcome="retryable_error").inc()
                logger.warning(
                    "Provider call failed",
                    provider=provider.name,
                    attempt=attempt,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue

            PROVIDER_ATTEMPTS.labels(provider=provider.name, outcome="success").inc()
            await _report_success(breaker, circuit_id)

            failover = {
                "total_attempts": attempts_made,
                "failed_over": index > 0,
                "primary_provider": preferred.name,
                "final_provider": provider.name,
                "skipped_providers": skipped,
                "errors": [
                    {"provider": f.provider, "attempt": f.attempt, "error": str(f.error)}
                    for f in failed
                ],
                "total_duration_ms": int((time.monotonic() - start_time) * 1000),
            }
            return content.model_copy(
                update={"metadata": {**content.metadata, "failover": failover}}
            )

    raise RetryExhaustedError(failed)


async def _call_provider(call: ProviderCall, provider: AIProvider) -> GeneratedContent:
    """Run one attempt; anything other than a provider error counts as a permanent one."""
    try:
        return await call(provider)
    except ProviderError:
        raise
    except Exception as e:
        logger.exception("Unexpected provider failure", provider=provider.name)
        raise ProviderError(f"{provider.name} failed unexpectedly: {e}", provider.name) from e


async def _report_success(breaker: CircuitBreakerEngine | None, circuit_id: str) -> None:
    if breaker is None:
        return
    try:
        await breaker.record_success(circuit_id)
    except CircuitStoreError as e:
        logger.warning("Failed to record provider success", circuit_id=circuit_id, error=str(e))


async def _report_failure(
    breaker: CircuitBreakerEngine | None,
    circuit_id: str,
    error: ProviderError,
) -> None:
    if breaker is None:
        return
    try:
        await breaker.record_failure(circuit_id, error)
    except CircuitStoreError as e:
        logger.warning("Failed to record provider failure", circuit_id=circuit_id, error=str(e))
