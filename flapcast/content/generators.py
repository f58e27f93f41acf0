"""Content generator registry.

A generator is a ``GeneratorSpec`` value, not a subclass: AI generators
carry prompts and hooks that ``generate_content`` feeds to a provider,
programmatic generators carry a ``render`` function.
"""

from dataclasses import dataclass, field
from typing import Any, Callable

from flapcast.core.errors import ConfigurationError
from flapcast.core.logging import get_logger
from flapcast.models.content import GeneratedContent, GenerationRequest, OutputMode, UpdateType
from flapcast.providers.base import AIProvider

logger = get_logger(__name__)

RequestHook = Callable[[GenerationRequest], dict[str, Any]]

BASE_SYSTEM_PROMPT = """You write messages for a split-flap display in a home.

The display shows 6 rows of 22 characters, uppercase letters, digits and
basic punctuation only. No emoji, no markdown, no quotes around the answer.
Keep the whole message under 100 characters.
"""


@dataclass
class GeneratorSpec:
    """Strategy describing one content generator.

    Attributes:
        id: Registry key
        name: Human readable name
        priority: Higher wins when several generators apply
        requires_ai: Whether a provider call is needed
        system_prompt: System prompt for AI generators
        user_prompt: User prompt template, formatted with template variables
        template_variables: Extra template variables for a request
        custom_metadata: Extra metadata attached to the generated content
        applies_to: Whether the generator can serve a request
        render: Produces content without a provider (programmatic generators)
    """

    id: str
    name: str
    priority: int = 0
    requires_ai: bool = True
    system_prompt: str = BASE_SYSTEM_PROMPT
    user_prompt: str = ""
    template_variables: RequestHook | None = None
    custom_metadata: RequestHook | None = None
    applies_to: Callable[[GenerationRequest], bool] = field(default=lambda request: True)
    render: Callable[[GenerationRequest], GeneratedContent] | None = None

    def __post_init__(self):
        if self.requires_ai and not self.user_prompt:
            raise ConfigurationError(f"AI generator {self.id} needs a user prompt")
        if not self.requires_ai and self.render is None:
            raise ConfigurationError(f"Programmatic generator {self.id} needs a render function")


class GeneratorRegistry:
    """Generators keyed by id."""

    def __init__(self, specs: list[GeneratorSpec] | None = None):
        self._specs: dict[str, GeneratorSpec] = {}
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: GeneratorSpec) -> None:
        if spec.id in self._specs:
            raise ConfigurationError(f"Generator already registered: {spec.id}")
        self._specs[spec.id] = spec

    def get(self, generator_id: str) -> GeneratorSpec:
        try:
            return self._specs[generator_id]
        except KeyError:
            raise ConfigurationError(f"Unknown generator: {generator_id}") from None

    @property
    def ids(self) -> list[str]:
        return list(self._specs)

    def select(self, request: GenerationRequest) -> GeneratorSpec:
        """Pick the generator for a request.

        An explicit ``generator_id`` wins; otherwise the highest priority
        applicable generator, earliest registered on ties.

        Raises:
            ConfigurationError: If the id is unknown or nothing applies
        """
        if request.generator_id:
            return self.get(request.generator_id)

        candidates = [spec for spec in self._specs.values() if spec.applies_to(request)]
        if not candidates:
            raise ConfigurationError("No generator applies to the request")
        return max(candidates, key=lambda spec: spec.priority)


def base_template_variables(request: GenerationRequest) -> dict[str, Any]:
    local = request.timestamp.astimezone()
    return {
        "date": local.strftime("%A %B %d"),
        "time": local.strftime("%H:%M"),
        "weekday": local.strftime("%A"),
        "update_type": request.update_type.value,
    }


async def generate_content(
    spec: GeneratorSpec,
    request: GenerationRequest,
    provider: AIProvider | None = None,
) -> GeneratedContent:
    """Generate content with a generator spec.

    Args:
        spec: Generator to run
        request: Generation request
        provider: Provider for AI generators

    Returns:
        Generated content with generator details in its metadata

    Raises:
        ProviderError: If the provider call fails
    """
    metadata: dict[str, Any] = {"generator_id": spec.id, "generator_name": spec.name}
    if spec.custom_metadata:
        metadata.update(spec.custom_metadata(request))

    if not spec.requires_ai:
        content = spec.render(request)
        return content.model_copy(update={"metadata": {**content.metadata, **metadata}})

    if provider is None:
        raise ConfigurationError(f"Generator {spec.id} requires an AI provider")

    variables = base_template_variables(request)
    if spec.template_variables:
        variables.update(spec.template_variables(request))

    user_prompt = spec.user_prompt.format_map(variables)
    response = await provider.generate(spec.system_prompt, user_prompt)

    metadata.update(
        provider=response.provider,
        model=response.model,
        tokens_used=response.tokens_used,
    )
    return GeneratedContent(text=response.text, output_mode=OutputMode.TEXT, metadata=metadata)


# Built-in generators


def _is_state_change(request: GenerationRequest) -> bool:
    data = request.event_data or {}
    return isinstance(data.get("entity_id"), str) and isinstance(data.get("new_state"), dict)


def _state_change_variables(request: GenerationRequest) -> dict[str, Any]:
    data = request.event_data or {}
    new_state = data.get("new_state") or {}
    old_state = data.get("old_state") or {}
    attributes = new_state.get("attributes") or {}
    return {
        "entity_id": data.get("entity_id", ""),
        "friendly_name": attributes.get("friendly_name") or data.get("entity_id", ""),
        "new_state": new_state.get("state", ""),
        "old_state": old_state.get("state", "unknown"),
    }


def _state_change_metadata(request: GenerationRequest) -> dict[str, Any]:
    data = request.event_data or {}
    return {"entity_id": data.get("entity_id"), "trigger": data.get("trigger")}


def _render_greeting(request: GenerationRequest) -> GeneratedContent:
    hour = request.timestamp.astimezone().hour
    if 5 <= hour < 12:
        greeting = "Good morning!"
    elif 12 <= hour < 17:
        greeting = "Good afternoon!"
    elif 17 <= hour < 21:
        greeting = "Good evening!"
    else:
        greeting = "Good night!"
    return GeneratedContent(text=greeting, output_mode=OutputMode.TEXT)


MOTIVATIONAL = GeneratorSpec(
    id="motivational",
    name="Motivational",
    priority=0,
    user_prompt=(
        "It is {weekday}, {time}. Write one short, original motivational "
        "message for the household."
    ),
)

STATE_CHANGE = GeneratorSpec(
    id="state-change",
    name="State change",
    priority=10,
    user_prompt=(
        "{friendly_name} just changed from {old_state} to {new_state} at {time}. "
        "Write a short, playful announcement about it."
    ),
    template_variables=_state_change_variables,
    custom_metadata=_state_change_metadata,
    applies_to=_is_state_change,
)

GREETING = GeneratorSpec(
    id="greeting",
    name="Greeting",
    priority=5,
    requires_ai=False,
    applies_to=lambda request: request.update_type == UpdateType.MINOR,
    render=_render_greeting,
)


def default_registry() -> GeneratorRegistry:
    """Registry with the built-in generators."""
    return GeneratorRegistry([MOTIVATIONAL, STATE_CHANGE, GREETING])
