"""Circuit breaker domain models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class CircuitType(str, Enum):
    """Circuit type enumeration."""

    MANUAL = "manual"
    PROVIDER = "provider"


class CircuitState(str, Enum):
    """Circuit state enumeration.

    ``on`` lets traffic through, ``off`` blocks it, ``half_open`` permits a
    single recovery trial (provider circuits only).
    """

    ON = "on"
    OFF = "off"
    HALF_OPEN = "half_open"


MASTER_CIRCUIT = "MASTER"
SLEEP_MODE_CIRCUIT = "SLEEP_MODE"


def provider_circuit_id(provider_name: str) -> str:
    """Map a provider name to its circuit id, e.g. ``openai`` -> ``PROVIDER_OPENAI``."""
    return f"PROVIDER_{provider_name.upper()}"


class CircuitDefinition(BaseModel):
    """Circuit definition used to seed the store."""

    circuit_id: str = Field(..., min_length=1, max_length=50)
    circuit_type: CircuitType
    default_state: CircuitState = CircuitState.ON
    description: str = ""
    failure_threshold: int = Field(default=5, ge=1)

    @model_validator(mode="after")
    def validate_default_state(self) -> "CircuitDefinition":
        """Manual circuits only know on and off."""
        if self.circuit_type == CircuitType.MANUAL and self.default_state == CircuitState.HALF_OPEN:
            raise ValueError("manual circuits cannot default to half_open")
        return self


class CircuitRecord(BaseModel):
    """Persisted circuit state."""

    circuit_id: str
    circuit_type: CircuitType
    state: CircuitState
    default_state: CircuitState
    description: str = ""
    failure_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    failure_threshold: int = Field(default=5, ge=1)
    last_failure_at: datetime | None = None
    last_success_at: datetime | None = None
    state_changed_at: datetime | None = None
    trial_started_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_provider(self) -> bool:
        return self.circuit_type == CircuitType.PROVIDER


class ManualCircuitStatus(BaseModel):
    """Read-only view of a manual circuit."""

    circuit_id: str
    circuit_type: CircuitType = CircuitType.MANUAL
    state: CircuitState
    default_state: CircuitState
    description: str = ""
    state_changed_at: datetime | None = None
    can_attempt: bool


class ProviderCircuitStatus(BaseModel):
    """Read-only view of a provider circuit with computed fields."""

    circuit_id: str
    circuit_type: CircuitType = CircuitType.PROVIDER
    state: CircuitState
    default_state: CircuitState
    description: str = ""
    failure_count: int
    success_count: int
    failure_threshold: int
    last_failure_at: datetime | None = None
    last_success_at: datetime | None = None
    state_changed_at: datetime | None = None
    trial_in_flight: bool = False
    can_attempt: bool
    reset_timeout_ms: int


CircuitStatus = ManualCircuitStatus | ProviderCircuitStatus


def default_circuits(
    provider_names: list[str],
    failure_threshold: int = 5,
) -> list[CircuitDefinition]:
    """Build the circuit set seeded at startup.

    Args:
        provider_names: Configured AI provider names
        failure_threshold: Threshold applied to provider circuits

    Returns:
        The MASTER and SLEEP_MODE switches followed by one circuit per
        distinct provider
    """
    circuits = [
        CircuitDefinition(
            circuit_id=MASTER_CIRCUIT,
            circuit_type=CircuitType.MANUAL,
            default_state=CircuitState.ON,
            description="Global kill switch - blocks all updates when off",
        ),
        CircuitDefinition(
            circuit_id=SLEEP_MODE_CIRCUIT,
            circuit_type=CircuitType.MANUAL,
            default_state=CircuitState.OFF,
            description="Quiet hours - blocks scheduled minor updates when on",
        ),
    ]
    for name in dict.fromkeys(provider_names):
        circuits.append(
            CircuitDefinition(
                circuit_id=provider_circuit_id(name),
                circuit_type=CircuitType.PROVIDER,
                default_state=CircuitState.ON,
                description=f"Auto-trips on {name} API failures",
                failure_threshold=failure_threshold,
            )
        )
    return circuits
