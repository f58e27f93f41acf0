"""Trigger configuration loading and hot reload."""

import asyncio
import os
from pathlib import Path
from typing import Callable

import yaml
from pydantic import ValidationError

from flapcast.core.errors import ConfigurationError
from flapcast.core.logging import get_logger
from flapcast.engine.trigger_matcher import compile_entity_pattern
from flapcast.models.trigger import TriggersConfig
from flapcast.observability.metrics import TRIGGER_RELOADS

logger = get_logger(__name__)

ReloadCallback = Callable[[TriggersConfig], None]
ErrorCallback = Callable[[Exception], None]


class TriggerConfigLoader:
    """Loads triggers from a YAML file and watches it for changes.

    Example file::

        triggers:
          - name: front_door
            entity_pattern: binary_sensor.front_door
            state_filter: "on"
            debounce_seconds: 60
          - name: people
            entity_pattern: "/^person\\\\.(john|jane)$/i"
    """

    def __init__(
        self,
        config_path: str | Path,
        poll_interval: float = 1.0,
        reload_debounce: float = 0.5,
    ):
        """Initialize loader.

        Args:
            config_path: Path to the triggers YAML file
            poll_interval: Seconds between modification checks
            reload_debounce: Quiet period required before a change is reloaded
        """
        self._path = Path(config_path)
        self._poll_interval = poll_interval
        self._reload_debounce = reload_debounce
        self._current: TriggersConfig | None = None
        self._task: asyncio.Task | None = None

    @property
    def config_path(self) -> Path:
        return self._path

    @property
    def current_config(self) -> TriggersConfig | None:
        """Last configuration that loaded successfully."""
        return self._current

    def load(self) -> TriggersConfig:
        """Read, parse and validate the triggers file.

        Returns:
            Validated configuration

        Raises:
            ConfigurationError: If the file is missing, malformed or invalid
        """
        try:
            content = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(
                f"Triggers file not found or not readable: {self._path}"
            ) from e

        try:
            raw = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML in {self._path}: {e}") from e

        if raw is None:
            raw = {"triggers": []}
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{self._path}: top level must be a mapping with 'triggers'")

        try:
            config = TriggersConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid triggers configuration in {self._path}: {e}") from e

        for trigger in config.triggers:
            try:
                compile_entity_pattern(trigger.entity_pattern)
            except ConfigurationError as e:
                raise ConfigurationError(f"Trigger '{trigger.name}': {e}") from e

        self._current = config
        logger.info("Triggers loaded", path=str(self._path), count=len(config.triggers))
        return config

    def start_watching(self, on_reload: ReloadCallback, on_error: ErrorCallback) -> None:
        """Start polling the file for changes.

        Args:
            on_reload: Called with the new configuration after a successful reload
            on_error: Called when a reload fails; the previous configuration stays active
        """
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._watch(on_reload, on_error))
        logger.info("Watching triggers file", path=str(self._path))

    async def stop_watching(self) -> None:
        """Stop polling. Safe to call when not watching."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _mtime(self) -> float | None:
        try:
            return os.stat(self._path).st_mtime
        except OSError:
            return None

    async def _watch(self, on_reload: ReloadCallback, on_error: ErrorCallback) -> None:
        last_seen = self._mtime()
        while True:
            await asyncio.sleep(self._poll_interval)
            mtime = self._mtime()
            if mtime == last_seen:
                continue

            # Wait until the file stops changing
            while True:
                await asyncio.sleep(self._reload_debounce)
                settled = self._mtime()
                if settled == mtime:
                    break
                mtime = settled
            last_seen = mtime

            self._reload(on_reload, on_error)

    def _reload(self, on_reload: ReloadCallback, on_error: ErrorCallback) -> None:
        try:
            config = self.load()
            on_reload(config)
        except Exception as e:
            TRIGGER_RELOADS.labels(status="failed").inc()
            logger.error("Triggers reload failed", path=str(self._path), error=str(e))
            on_error(e)
            return
        TRIGGER_RELOADS.labels(status="success").inc()
