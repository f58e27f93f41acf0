"""Tests for the content generator registry."""

from datetime import datetime

import pytest

from flapcast.content.generators import (
    GREETING,
    MOTIVATIONAL,
    STATE_CHANGE,
    GeneratorRegistry,
    GeneratorSpec,
    default_registry,
    generate_content,
)
from flapcast.core.errors import ConfigurationError
from flapcast.models.content import GeneratedContent, GenerationRequest, UpdateType
from flapcast.providers.base import AIProvider, ProviderResponse


class PromptRecorder(AIProvider):
    def __init__(self):
        self.prompts: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "openai"

    async def generate(self, system_prompt: str, user_prompt: str) -> ProviderResponse:
        self.prompts.append((system_prompt, user_prompt))
        return ProviderResponse(text="LIGHTS ON", provider="openai", model="gpt-4o-mini", tokens_used=12)


def local_time(hour: int) -> datetime:
    return datetime(2026, 1, 10, hour, 0).astimezone()


STATE_EVENT = {
    "entity_id": "light.kitchen",
    "old_state": {"state": "off"},
    "new_state": {"state": "on", "attributes": {"friendly_name": "Kitchen Light"}},
    "trigger": "kitchen",
}


def test_select_defaults_to_motivational() -> None:
    registry = default_registry()

    assert registry.select(GenerationRequest()).id == "motivational"


def test_select_prefers_state_change_for_state_events() -> None:
    registry = default_registry()

    assert registry.select(GenerationRequest(event_data=STATE_EVENT)).id == "state-change"


def test_select_greeting_for_minor_updates() -> None:
    registry = default_registry()

    assert registry.select(GenerationRequest(update_type=UpdateType.MINOR)).id == "greeting"


def test_explicit_generator_id_wins() -> None:
    registry = default_registry()
    request = GenerationRequest(event_data=STATE_EVENT, generator_id="motivational")

    assert registry.select(request).id == "motivational"


def test_unknown_generator_id_raises() -> None:
    with pytest.raises(ConfigurationError):
        default_registry().select(GenerationRequest(generator_id="weather"))


def test_ties_go_to_earliest_registered() -> None:
    first = GeneratorSpec(id="first", name="First", user_prompt="one")
    second = GeneratorSpec(id="second", name="Second", user_prompt="two")

    assert GeneratorRegistry([first, second]).select(GenerationRequest()).id == "first"


def test_no_applicable_generator_raises() -> None:
    registry = GeneratorRegistry([STATE_CHANGE])

    with pytest.raises(ConfigurationError):
        registry.select(GenerationRequest())


def test_duplicate_registration_rejected() -> None:
    registry = GeneratorRegistry([MOTIVATIONAL])

    with pytest.raises(ConfigurationError):
        registry.register(MOTIVATIONAL)


def test_spec_validation() -> None:
    with pytest.raises(ConfigurationError):
        GeneratorSpec(id="empty", name="Empty")
    with pytest.raises(ConfigurationError):
        GeneratorSpec(id="static", name="Static", requires_ai=False)


@pytest.mark.asyncio
async def test_state_change_prompt_and_metadata() -> None:
    provider = PromptRecorder()
    request = GenerationRequest(event_data=STATE_EVENT)

    content = await generate_content(STATE_CHANGE, request, provider)

    _, user_prompt = provider.prompts[0]
    assert "Kitchen Light just changed from off to on" in user_prompt
    assert content.text == "LIGHTS ON"
    assert content.metadata["generator_id"] == "state-change"
    assert content.metadata["entity_id"] == "light.kitchen"
    assert content.metadata["trigger"] == "kitchen"
    assert content.metadata["provider"] == "openai"
    assert content.metadata["tokens_used"] == 12


@pytest.mark.asyncio
async def test_ai_generator_without_provider_raises() -> None:
    with pytest.raises(ConfigurationError):
        await generate_content(MOTIVATIONAL, GenerationRequest())


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("hour", "expected"),
    [
        (5, "Good morning!"),
        (12, "Good afternoon!"),
        (17, "Good evening!"),
        (21, "Good night!"),
        (2, "Good night!"),
    ],
)
async def test_greeting_by_hour(hour: int, expected: str) -> None:
    request = GenerationRequest(update_type=UpdateType.MINOR, timestamp=local_time(hour))

    content = await generate_content(GREETING, request)

    assert content.text == expected
    assert content.metadata["generator_id"] == "greeting"


@pytest.mark.asyncio
async def test_programmatic_generator_keeps_render_metadata() -> None:
    spec = GeneratorSpec(
        id="static",
        name="Static",
        requires_ai=False,
        render=lambda request: GeneratedContent(text="HELLO", metadata={"source": "static"}),
    )

    content = await generate_content(spec, GenerationRequest())

    assert content.metadata == {"source": "static", "generator_id": "static", "generator_name": "Static"}
