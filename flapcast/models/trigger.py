"""Trigger configuration models."""

from pydantic import BaseModel, Field, field_validator, model_validator


class TriggerConfig(BaseModel):
    """A configured automation rule.

    ``entity_pattern`` is an exact entity id (``binary_sensor.front_door``), a
    glob (``person.*``) or a regex written as ``/body/flags``
    (``/^person\\.(john|jane)$/i``).

    Regex bodies compile with Python's ``re``. Syntax it does not accept,
    such as the ``(?<name>...)`` group form, is a configuration error when
    the triggers are loaded.
    """

    name: str = Field(..., min_length=1, description="Unique trigger name")
    entity_pattern: str = Field(..., min_length=1, description="Entity id, glob or /regex/")
    state_filter: str | list[str] | None = Field(
        default=None,
        description="Only fire when the entity changes to this state (or one of these)",
    )
    debounce_seconds: float = Field(
        default=0,
        ge=0,
        description="Suppress repeat firings within this window (0 disables)",
    )

    @field_validator("state_filter")
    @classmethod
    def validate_state_filter(cls, value: str | list[str] | None) -> str | list[str] | None:
        if isinstance(value, list) and not value:
            raise ValueError("state_filter list must not be empty")
        return value

    def matches_state(self, state: str) -> bool:
        """Check the new state against the state filter."""
        if self.state_filter is None:
            return True
        if isinstance(self.state_filter, str):
            return state == self.state_filter
        return state in self.state_filter


class TriggersConfig(BaseModel):
    """Root of the triggers configuration file."""

    triggers: list[TriggerConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_names(self) -> "TriggersConfig":
        """Trigger names key the debounce state and must be unique."""
        seen: set[str] = set()
        for trigger in self.triggers:
            if trigger.name in seen:
                raise ValueError(f"duplicate trigger name: {trigger.name}")
            seen.add(trigger.name)
        return self
