"""Content history storage."""

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from flapcast.core.logging import get_logger
from flapcast.models.content import ContentRecord, ContentStatus
from flapcast.storage.redis_client import RedisKeys, get_redis

logger = get_logger(__name__)


class ContentHistoryStore:
    """Capped list of content records, newest first.

    Writes are best effort: a failed write is logged and reported through
    the return value, never raised, so history never blocks delivery.
    """

    def __init__(self, redis: Redis | None = None, max_items: int = 500):
        self._redis = redis
        self._max_items = max_items

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def record(self, record: ContentRecord) -> bool:
        """Append a record.

        Args:
            record: Content record

        Returns:
            True if stored
        """
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.lpush(RedisKeys.CONTENT_HISTORY, record.model_dump_json())
                pipe.ltrim(RedisKeys.CONTENT_HISTORY, 0, self._max_items - 1)
                await pipe.execute()
        except RedisError as e:
            logger.warning("Failed to record content history", record_id=record.record_id, error=str(e))
            return False
        return True

    async def list_records(
        self,
        offset: int = 0,
        limit: int = 20,
        status: ContentStatus | None = None,
    ) -> tuple[list[ContentRecord], int]:
        """List records, newest first.

        Args:
            offset: Records to skip
            limit: Maximum records to return
            status: Only records with this status

        Returns:
            Tuple of (records, total matching)
        """
        raw_items = await self.redis.lrange(RedisKeys.CONTENT_HISTORY, 0, -1)

        records = []
        for raw in raw_items:
            try:
                records.append(ContentRecord.model_validate_json(raw))
            except ValidationError:
                logger.warning("Skipping malformed history record")
                continue

        if status is not None:
            records = [r for r in records if r.status == status]

        return records[offset:offset + limit], len(records)

    async def latest(self) -> ContentRecord | None:
        """Most recent record, if any."""
        records, _ = await self.list_records(limit=1)
        return records[0] if records else None
