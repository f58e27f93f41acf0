"""Tests for loading and watching the triggers file."""

import asyncio
import os
from pathlib import Path

import pytest

from flapcast.config.trigger_loader import TriggerConfigLoader
from flapcast.core.errors import ConfigurationError

VALID = """
triggers:
  - name: front_door
    entity_pattern: binary_sensor.front_door
    state_filter: "on"
    debounce_seconds: 60
  - name: people
    entity_pattern: "/^person\\\\.(john|jane)$/i"
    state_filter: [home, not_home]
"""


def write(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")
    # Make every write visible to the mtime poller
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 10))


def test_load_valid_file(tmp_path) -> None:
    path = tmp_path / "triggers.yaml"
    path.write_text(VALID, encoding="utf-8")
    loader = TriggerConfigLoader(path)

    config = loader.load()

    assert [t.name for t in config.triggers] == ["front_door", "people"]
    assert config.triggers[0].state_filter == "on"
    assert config.triggers[0].debounce_seconds == 60
    assert config.triggers[1].entity_pattern == "/^person\\.(john|jane)$/i"
    assert config.triggers[1].state_filter == ["home", "not_home"]
    assert loader.current_config == config


def test_empty_file_has_no_triggers(tmp_path) -> None:
    path = tmp_path / "triggers.yaml"
    path.write_text("", encoding="utf-8")

    assert TriggerConfigLoader(path).load().triggers == []


def test_missing_file(tmp_path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        TriggerConfigLoader(tmp_path / "missing.yaml").load()


@pytest.mark.parametrize(
    "content",
    [
        "triggers: [unclosed",
        "- just\n- a list\n",
        "triggers:\n  - name: no_pattern\n",
        "triggers:\n  - name: a\n    entity_pattern: light.*\n  - name: a\n    entity_pattern: switch.*\n",
        "triggers:\n  - name: neg\n    entity_pattern: light.*\n    debounce_seconds: -1\n",
        "triggers:\n  - name: bad_regex\n    entity_pattern: \"/([a-z/\"\n",
    ],
    ids=["bad_yaml", "not_a_mapping", "missing_field", "duplicate_names", "negative_debounce", "bad_regex"],
)
def test_invalid_files_raise_configuration_error(tmp_path, content: str) -> None:
    path = tmp_path / "triggers.yaml"
    path.write_text(content, encoding="utf-8")
    loader = TriggerConfigLoader(path)

    with pytest.raises(ConfigurationError):
        loader.load()
    assert loader.current_config is None


@pytest.mark.asyncio
async def test_watch_reloads_on_change(tmp_path) -> None:
    path = tmp_path / "triggers.yaml"
    path.write_text(VALID, encoding="utf-8")
    loader = TriggerConfigLoader(path, poll_interval=0.01, reload_debounce=0.01)
    loader.load()

    reloaded = asyncio.Event()
    configs = []

    def on_reload(config) -> None:
        configs.append(config)
        reloaded.set()

    loader.start_watching(on_reload, lambda error: None)
    try:
        await asyncio.sleep(0.03)
        write(path, "triggers:\n  - name: lights\n    entity_pattern: light.*\n")
        await asyncio.wait_for(reloaded.wait(), timeout=2)
    finally:
        await loader.stop_watching()

    assert [t.name for t in configs[-1].triggers] == ["lights"]
    assert loader.current_config == configs[-1]


@pytest.mark.asyncio
async def test_failed_reload_keeps_previous_config(tmp_path) -> None:
    path = tmp_path / "triggers.yaml"
    path.write_text(VALID, encoding="utf-8")
    loader = TriggerConfigLoader(path, poll_interval=0.01, reload_debounce=0.01)
    previous = loader.load()

    failed = asyncio.Event()
    errors: list[Exception] = []
    reloads = []

    def on_error(error: Exception) -> None:
        errors.append(error)
        failed.set()

    loader.start_watching(reloads.append, on_error)
    try:
        await asyncio.sleep(0.03)
        write(path, "triggers: [unclosed")
        await asyncio.wait_for(failed.wait(), timeout=2)
    finally:
        await loader.stop_watching()

    assert isinstance(errors[0], ConfigurationError)
    assert reloads == []
    assert loader.current_config == previous


@pytest.mark.asyncio
async def test_stop_watching_is_idempotent(tmp_path) -> None:
    path = tmp_path / "triggers.yaml"
    path.write_text(VALID, encoding="utf-8")
    loader = TriggerConfigLoader(path, poll_interval=0.01)

    await loader.stop_watching()
    loader.start_watching(lambda config: None, lambda error: None)
    await loader.stop_watching()
    await loader.stop_watching()
