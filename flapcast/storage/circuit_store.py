"""Circuit breaker state storage."""

from enum import Enum
from typing import Any, Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from flapcast.core.clock import Clock, utcnow
from flapcast.core.errors import CircuitStoreError
from flapcast.core.logging import get_logger
from flapcast.models.circuit import CircuitDefinition, CircuitRecord
from flapcast.storage.redis_client import RedisKeys, get_redis

logger = get_logger(__name__)

# Mutator contract for CircuitStore.transact: receives the current record and
# returns the fields to change (empty dict for no change).
CircuitMutator = Callable[[CircuitRecord], dict[str, Any]]

_NULLABLE_FIELDS = (
    "last_failure_at",
    "last_success_at",
    "state_changed_at",
    "trial_started_at",
    "created_at",
    "updated_at",
)


def _encode(fields: dict[str, Any]) -> dict[str, str]:
    """Encode record fields as Redis hash values."""
    encoded = {}
    for key, value in fields.items():
        if value is None:
            encoded[key] = ""
        elif hasattr(value, "isoformat"):
            encoded[key] = value.isoformat()
        elif isinstance(value, Enum):
            encoded[key] = str(value.value)
        else:
            encoded[key] = str(value)
    return encoded


def _decode(data: dict[str, str]) -> CircuitRecord:
    """Decode a Redis hash into a circuit record."""
    fields: dict[str, Any] = dict(data)
    for key in _NULLABLE_FIELDS:
        if not fields.get(key):
            fields[key] = None
    return CircuitRecord.model_validate(fields)


class CircuitStore:
    """Circuit state storage using one Redis hash per circuit.

    Every Redis failure is raised as ``CircuitStoreError`` so callers can
    apply their own failure policy.
    """

    MAX_TRANSACTION_RETRIES = 20

    def __init__(self, redis: Redis | None = None, clock: Clock = utcnow):
        self._redis = redis
        self._clock = clock

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def initialize_circuit(self, definition: CircuitDefinition) -> bool:
        """Create a circuit if it does not exist yet.

        Args:
            definition: Circuit definition

        Returns:
            True if created, False if the circuit already existed
        """
        key = RedisKeys.circuit_detail(definition.circuit_id)
        now = self._clock()
        record = CircuitRecord(
            circuit_id=definition.circuit_id,
            circuit_type=definition.circuit_type,
            state=definition.default_state,
            default_state=definition.default_state,
            description=definition.description,
            failure_threshold=definition.failure_threshold,
            created_at=now,
            updated_at=now,
        )

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                for _ in range(self.MAX_TRANSACTION_RETRIES):
                    try:
                        await pipe.watch(key)
                        if await pipe.exists(key):
                            await pipe.unwatch()
                            # Keep the set consistent with pre-existing hashes
                            await self.redis.sadd(RedisKeys.CIRCUIT_ALL, definition.circuit_id)
                            return False
                        pipe.multi()
                        pipe.hset(key, mapping=_encode(record.model_dump()))
                        pipe.sadd(RedisKeys.CIRCUIT_ALL, definition.circuit_id)
                        await pipe.execute()
                        return True
                    except WatchError:
                        continue
        except RedisError as e:
            raise CircuitStoreError(
                f"Failed to initialize circuit {definition.circuit_id}: {e}"
            ) from e

        raise CircuitStoreError(f"Too much contention initializing {definition.circuit_id}")

    async def get(self, circuit_id: str) -> CircuitRecord | None:
        """Get a circuit by ID.

        Args:
            circuit_id: Circuit ID

        Returns:
            Circuit record if found, None otherwise
        """
        try:
            data = await self.redis.hgetall(RedisKeys.circuit_detail(circuit_id))
        except RedisError as e:
            raise CircuitStoreError(f"Failed to read circuit {circuit_id}: {e}") from e
        if not data:
            return None
        return _decode(data)

    async def list_all(self) -> list[CircuitRecord]:
        """List all circuits sorted by ID."""
        try:
            circuit_ids = await self.redis.smembers(RedisKeys.CIRCUIT_ALL)
        except RedisError as e:
            raise CircuitStoreError(f"Failed to list circuits: {e}") from e

        records = []
        for circuit_id in sorted(circuit_ids):
            record = await self.get(circuit_id)
            if record:
                records.append(record)
        return records

    async def update(self, circuit_id: str, **fields: Any) -> CircuitRecord | None:
        """Apply a partial update to a circuit.

        Args:
            circuit_id: Circuit to update
            **fields: Record fields to overwrite

        Returns:
            Updated record, None if the circuit does not exist
        """
        return await self.transact(circuit_id, lambda _record: fields)

    async def transact(
        self,
        circuit_id: str,
        mutator: CircuitMutator,
    ) -> CircuitRecord | None:
        """Atomically read, modify and write one circuit.

        The read happens under WATCH; if another writer touches the circuit
        before the write commits, the mutator runs again on the fresh record.

        Args:
            circuit_id: Circuit to modify
            mutator: Returns the fields to change for a given record

        Returns:
            The record after the write, None if the circuit does not exist
        """
        key = RedisKeys.circuit_detail(circuit_id)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                for _ in range(self.MAX_TRANSACTION_RETRIES):
                    try:
                        await pipe.watch(key)
                        data = await pipe.hgetall(key)
                        if not data:
                            await pipe.unwatch()
                            return None

                        record = _decode(data)
                        changes = mutator(record)
                        if not changes:
                            await pipe.unwatch()
                            return record

                        changes = {**changes, "updated_at": self._clock()}
                        pipe.multi()
                        pipe.hset(key, mapping=_encode(changes))
                        await pipe.execute()
                        return record.model_copy(update=changes)
                    except WatchError:
                        logger.debug("Circuit write conflict, retrying", circuit_id=circuit_id)
                        continue
        except RedisError as e:
            raise CircuitStoreError(f"Failed to update circuit {circuit_id}: {e}") from e

        raise CircuitStoreError(f"Too much contention updating circuit {circuit_id}")
