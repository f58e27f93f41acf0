"""API dependency injection."""

from typing import Annotated

from fastapi import Depends, Query

from flapcast.breaker.engine import CircuitBreakerEngine
from flapcast.core.config import get_settings
from flapcast.schemas.common import PaginationParams
from flapcast.storage.circuit_store import CircuitStore
from flapcast.storage.history_store import ContentHistoryStore
from flapcast.storage.redis_client import get_redis


def get_circuit_engine() -> CircuitBreakerEngine:
    """Get circuit breaker engine over the shared Redis pool."""
    settings = get_settings()
    return CircuitBreakerEngine(
        CircuitStore(get_redis()),
        reset_timeout_seconds=settings.circuit_reset_timeout_seconds,
        half_open_successes=settings.circuit_half_open_successes,
        store_failure_policy=settings.circuit_store_failure_policy,
    )


def get_history_store() -> ContentHistoryStore:
    """Get content history store instance."""
    return ContentHistoryStore(get_redis(), max_items=get_settings().history_max_items)


# Type aliases for dependency injection
CircuitEngineDep = Annotated[CircuitBreakerEngine, Depends(get_circuit_engine)]
HistoryStoreDep = Annotated[ContentHistoryStore, Depends(get_history_store)]


def get_pagination(
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
) -> PaginationParams:
    """Get pagination parameters from query."""
    return PaginationParams(page=page, page_size=page_size)


PaginationDep = Annotated[PaginationParams, Depends(get_pagination)]
