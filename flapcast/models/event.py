"""Home Assistant event models."""

from typing import Any

from pydantic import BaseModel, Field


class HAEvent(BaseModel):
    """Event delivered by the Home Assistant event bus."""

    event_type: str = Field(..., description="Event type, e.g. 'state_changed'")
    data: dict[str, Any] = Field(default_factory=dict, description="Event payload")
    origin: str | None = Field(default=None, description="LOCAL or REMOTE")
    time_fired: str | None = Field(default=None, description="ISO timestamp from Home Assistant")

    @property
    def entity_id(self) -> str | None:
        """Entity id of a state_changed event, if present."""
        value = self.data.get("entity_id")
        return value if isinstance(value, str) and value else None

    @property
    def new_state(self) -> str | None:
        """``new_state.state`` of a state_changed event, if present."""
        new_state = self.data.get("new_state")
        if not isinstance(new_state, dict):
            return None
        value = new_state.get("state")
        return value if isinstance(value, str) and value else None
