"""Content generation domain models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from flapcast.core.clock import utcnow
from flapcast.models.circuit import CircuitState


class UpdateType(str, Enum):
    """Update type enumeration."""

    MAJOR = "major"
    MINOR = "minor"


class OutputMode(str, Enum):
    """How generated content is rendered on the display."""

    TEXT = "text"
    LAYOUT = "layout"


class BlockReason(str, Enum):
    """Why generation was deliberately skipped."""

    MASTER_CIRCUIT_OFF = "master_circuit_off"
    PROVIDER_UNAVAILABLE = "provider_unavailable"


class GenerationRequest(BaseModel):
    """Request handed to the orchestrator."""

    update_type: UpdateType = UpdateType.MAJOR
    timestamp: datetime = Field(default_factory=utcnow)
    event_data: dict[str, Any] | None = Field(
        default=None,
        description="Payload of the event that caused this request",
    )
    generator_id: str | None = Field(
        default=None,
        description="Force a specific generator instead of letting the registry choose",
    )


class GeneratedContent(BaseModel):
    """Output of a content generator."""

    text: str = ""
    output_mode: OutputMode = OutputMode.TEXT
    layout: list[list[int]] | None = Field(
        default=None,
        description="6x22 character codes when output_mode is layout",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class CircuitSnapshot(BaseModel):
    """Circuit states observed while handling a request."""

    master: bool
    providers: dict[str, CircuitState] = Field(default_factory=dict)


class OrchestratorResult(BaseModel):
    """Outcome of a generate-and-send attempt."""

    success: bool
    content: GeneratedContent | None = None
    blocked: bool | None = None
    block_reason: BlockReason | None = None
    circuit_state: CircuitSnapshot | None = None
    error: str | None = None


class ContentStatus(str, Enum):
    """Delivery status of a history record."""

    SUCCESS = "success"
    FAILED = "failed"
    BLOCKED = "blocked"


class ContentRecord(BaseModel):
    """Content history entry."""

    record_id: str
    status: ContentStatus
    update_type: UpdateType
    text: str = ""
    generator_id: str | None = None
    provider: str | None = None
    failed_over: bool = False
    block_reason: BlockReason | None = None
    error: str | None = None
    generated_at: datetime
    sent_at: datetime | None = None
