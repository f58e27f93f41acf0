"""Content history API routes."""

from fastapi import APIRouter, Query

from flapcast.api.deps import HistoryStoreDep, PaginationDep
from flapcast.models.content import ContentRecord, ContentStatus
from flapcast.schemas.common import PaginatedResponse

router = APIRouter(prefix="/history", tags=["history"])


@router.get("", response_model=PaginatedResponse[ContentRecord])
async def list_history(
    store: HistoryStoreDep,
    pagination: PaginationDep,
    status: ContentStatus | None = Query(default=None, description="Filter by delivery status"),
) -> PaginatedResponse[ContentRecord]:
    """List generated content, newest first."""
    records, total = await store.list_records(
        offset=pagination.offset,
        limit=pagination.page_size,
        status=status,
    )
    return PaginatedResponse(
        data=records,
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )
