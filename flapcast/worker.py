"""Worker process entry point: Home Assistant events to display updates."""

import asyncio
import signal

from flapcast.breaker.engine import CircuitBreakerEngine
from flapcast.config.trigger_loader import TriggerConfigLoader
from flapcast.content.generators import default_registry
from flapcast.content.orchestrator import ContentOrchestrator
from flapcast.content.retry import RetryConfig
from flapcast.core.config import Settings, get_settings
from flapcast.core.logging import get_logger, setup_logging
from flapcast.display.client import DisplayClient
from flapcast.engine.trigger_matcher import TriggerMatcher
from flapcast.messaging.ha_client import HomeAssistantClient
from flapcast.models.circuit import default_circuits
from flapcast.models.trigger import TriggersConfig
from flapcast.providers.base import AIProvider
from flapcast.providers.openai_provider import OpenAIProvider
from flapcast.scheduler.event_handler import EventHandler
from flapcast.scheduler.minor_updates import MinorUpdateScheduler
from flapcast.storage.circuit_store import CircuitStore
from flapcast.storage.history_store import ContentHistoryStore
from flapcast.storage.redis_client import close_redis_pool, get_redis, init_redis_pool

logger = get_logger(__name__)


def build_providers(settings: Settings) -> tuple[AIProvider, AIProvider | None]:
    """Create the preferred provider and the optional failover provider."""
    preferred = OpenAIProvider(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout,
        name="openai",
    )
    if not settings.alternate_provider_name:
        return preferred, None

    alternate = OpenAIProvider(
        api_key=settings.alternate_api_key,
        model=settings.alternate_model or settings.openai_model,
        base_url=settings.alternate_base_url or settings.openai_base_url,
        timeout=settings.openai_timeout,
        name=settings.alternate_provider_name,
    )
    return preferred, alternate


class WorkerManager:
    """Owns the service components and their start-up and shutdown order."""

    def __init__(self):
        """Initialize worker manager."""
        self._settings = get_settings()
        self._shutdown_event = asyncio.Event()
        self._providers: list[AIProvider] = []
        self._display: DisplayClient | None = None
        self._ha_client: HomeAssistantClient | None = None
        self._event_handler: EventHandler | None = None
        self._trigger_loader: TriggerConfigLoader | None = None
        self._trigger_matcher: TriggerMatcher | None = None
        self._minor_updates: MinorUpdateScheduler | None = None

    async def start(self) -> None:
        """Start the service and run until stopped."""
        setup_logging()
        settings = self._settings
        logger.info("Starting worker", app_name=settings.app_name, version=settings.app_version)

        await init_redis_pool()
        try:
            await self._setup()
            logger.info("Worker running")
            await self._shutdown_event.wait()
        finally:
            await self._cleanup()

    async def stop(self) -> None:
        """Signal the worker to stop."""
        logger.info("Stopping worker")
        self._shutdown_event.set()

    async def _setup(self) -> None:
        settings = self._settings
        redis = get_redis()

        preferred, alternate = build_providers(settings)
        self._providers = [p for p in (preferred, alternate) if p is not None]

        breaker = CircuitBreakerEngine(
            CircuitStore(redis),
            reset_timeout_seconds=settings.circuit_reset_timeout_seconds,
            half_open_successes=settings.circuit_half_open_successes,
            store_failure_policy=settings.circuit_store_failure_policy,
        )
        await breaker.initialize(
            default_circuits(
                [p.name for p in self._providers],
                failure_threshold=settings.circuit_failure_threshold,
            )
        )

        self._display = DisplayClient(
            base_url=settings.display_url,
            api_key=settings.display_api_key,
            timeout=settings.display_timeout_seconds,
            max_retries=settings.display_max_retries,
            max_backoff=settings.display_max_backoff_seconds,
        )
        if not await self._display.validate_connection():
            logger.warning("Display unreachable at start-up, updates will retry", url=settings.display_url)

        orchestrator = ContentOrchestrator(
            breaker=breaker,
            registry=default_registry(),
            preferred_provider=preferred,
            alternate_provider=alternate,
            display=self._display,
            history=ContentHistoryStore(redis, max_items=settings.history_max_items),
            retry_config=RetryConfig.from_settings(settings),
        )

        if settings.triggers_config_path:
            self._trigger_loader = TriggerConfigLoader(
                settings.triggers_config_path,
                poll_interval=settings.triggers_watch_interval_seconds,
                reload_debounce=settings.triggers_reload_debounce_seconds,
            )
            config = self._trigger_loader.load()
            self._trigger_matcher = TriggerMatcher(config.triggers)

        self._ha_client = HomeAssistantClient(
            settings.ha_url,
            settings.ha_token,
            reconnect_delay=settings.ha_reconnect_delay_seconds,
            max_reconnect_delay=settings.ha_max_reconnect_delay_seconds,
        )
        await self._ha_client.connect()

        self._event_handler = EventHandler(
            self._ha_client,
            orchestrator,
            trigger_matcher=self._trigger_matcher,
            refresh_event=settings.ha_refresh_event,
        )
        await self._event_handler.initialize()

        if self._trigger_loader and settings.triggers_watch:
            self._trigger_loader.start_watching(self._on_triggers_reloaded, self._on_triggers_error)

        if settings.minor_updates_enabled:
            self._minor_updates = MinorUpdateScheduler(
                orchestrator,
                breaker,
                interval_seconds=settings.minor_update_interval_seconds,
            )
            self._minor_updates.start()

    def _on_triggers_reloaded(self, config: TriggersConfig) -> None:
        if self._trigger_matcher is not None:
            self._trigger_matcher.update_triggers(config.triggers)

    def _on_triggers_error(self, error: Exception) -> None:
        logger.error("Keeping previous triggers after failed reload", error=str(error))

    async def _cleanup(self) -> None:
        """Clean up resources."""
        logger.info("Cleaning up resources")
        if self._minor_updates:
            await self._minor_updates.stop()
        if self._trigger_loader:
            await self._trigger_loader.stop_watching()
        if self._event_handler:
            await self._event_handler.shutdown()
        elif self._ha_client:
            await self._ha_client.disconnect()
        if self._display:
            await self._display.close()
        for provider in self._providers:
            await provider.close()
        await close_redis_pool()
        logger.info("Cleanup complete")


async def main() -> None:
    """Main entry point for worker process."""
    manager = WorkerManager()

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(manager.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await manager.start()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
