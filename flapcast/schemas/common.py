"""Response envelopes shared by the admin API."""

from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Envelope for every JSON answer: ``code`` 0 on success, the HTTP status otherwise."""

    code: int = Field(default=0, description="Response code, 0 for success")
    message: str = Field(default="success", description="Response message")
    data: T | None = Field(default=None, description="Response data")


def error_body(status_code: int, message: str, data: Any = None) -> dict[str, Any]:
    """JSON body of an error answer in the standard envelope."""
    return APIResponse[Any](code=status_code, message=message, data=data).model_dump(mode="json")


class PaginatedResponse(BaseModel, Generic[T]):
    code: int = Field(default=0, description="Response code")
    message: str = Field(default="success", description="Response message")
    data: list[T] = Field(default_factory=list, description="Page items, newest first")
    total: int = Field(default=0, ge=0, description="Items matching the filter")
    page: int = Field(default=1, ge=1, description="Current page")
    page_size: int = Field(default=20, ge=1, le=100, description="Page size")


class PaginationParams(BaseModel):
    """Pagination query parameters."""

    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Items per page")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class HealthResponse(BaseModel):
    """Liveness answer of the admin API."""

    status: Literal["ok", "degraded"]
    version: str
    redis: bool = Field(description="Whether the circuit store answered a ping")
