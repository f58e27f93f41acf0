"""Circuit breaker admin routes."""

from fastapi import APIRouter, HTTPException, Query

from flapcast.api.deps import CircuitEngineDep
from flapcast.core.errors import ConfigurationError
from flapcast.core.logging import get_logger
from flapcast.models.circuit import (
    CircuitState,
    CircuitType,
    ManualCircuitStatus,
    ProviderCircuitStatus,
)
from flapcast.schemas.common import APIResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/circuits", tags=["circuits"])

CircuitStatusResponse = ManualCircuitStatus | ProviderCircuitStatus


@router.get("", response_model=APIResponse[list[CircuitStatusResponse]])
async def list_circuits(
    engine: CircuitEngineDep,
    circuit_type: CircuitType | None = Query(default=None, description="Filter by circuit type"),
) -> APIResponse[list[CircuitStatusResponse]]:
    """List all circuits."""
    circuits = await engine.list_circuits(circuit_type)
    return APIResponse(data=circuits)


@router.get("/{circuit_id}", response_model=APIResponse[CircuitStatusResponse])
async def get_circuit(circuit_id: str, engine: CircuitEngineDep) -> APIResponse[CircuitStatusResponse]:
    """Get a circuit status. Reading never changes circuit state."""
    try:
        status = await engine.get_status(circuit_id)
    except ConfigurationError:
        raise HTTPException(status_code=404, detail=f"Circuit {circuit_id} not found")
    return APIResponse(data=status)


@router.post("/{circuit_id}/on", response_model=APIResponse[CircuitStatusResponse])
async def turn_on(circuit_id: str, engine: CircuitEngineDep) -> APIResponse[CircuitStatusResponse]:
    """Turn a circuit on."""
    return await _set_state(engine, circuit_id, CircuitState.ON)


@router.post("/{circuit_id}/off", response_model=APIResponse[CircuitStatusResponse])
async def turn_off(circuit_id: str, engine: CircuitEngineDep) -> APIResponse[CircuitStatusResponse]:
    """Turn a circuit off."""
    return await _set_state(engine, circuit_id, CircuitState.OFF)


@router.post("/{circuit_id}/reset", response_model=APIResponse[CircuitStatusResponse])
async def reset_circuit(circuit_id: str, engine: CircuitEngineDep) -> APIResponse[CircuitStatusResponse]:
    """Reset a provider circuit to its default state and clear its counters."""
    try:
        current = await engine.get_status(circuit_id)
    except ConfigurationError:
        raise HTTPException(status_code=404, detail=f"Circuit {circuit_id} not found")

    if current.circuit_type != CircuitType.PROVIDER:
        raise HTTPException(
            status_code=400,
            detail=f"Circuit {circuit_id} is not a provider circuit",
        )

    status = await engine.reset(circuit_id)
    logger.info("Circuit reset via API", circuit_id=circuit_id, state=status.state.value)
    return APIResponse(data=status)


async def _set_state(
    engine: CircuitEngineDep,
    circuit_id: str,
    state: CircuitState,
) -> APIResponse[CircuitStatusResponse]:
    try:
        status = await engine.set_state(circuit_id, state)
    except ConfigurationError:
        raise HTTPException(status_code=404, detail=f"Circuit {circuit_id} not found")

    logger.info("Circuit state set via API", circuit_id=circuit_id, state=state.value)
    return APIResponse(data=status)
