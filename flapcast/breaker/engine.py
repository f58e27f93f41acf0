"""Circuit breaker state machine."""

from datetime import datetime
from typing import Any, Literal

from flapcast.core.clock import Clock, utcnow
from flapcast.core.errors import AuthenticationError, CircuitStoreError, ConfigurationError
from flapcast.core.logging import get_logger
from flapcast.models.circuit import (
    CircuitDefinition,
    CircuitRecord,
    CircuitState,
    CircuitStatus,
    CircuitType,
    ManualCircuitStatus,
    ProviderCircuitStatus,
)
from flapcast.observability.metrics import CIRCUIT_STATE, CIRCUIT_TRANSITIONS
from flapcast.storage.circuit_store import CircuitStore

logger = get_logger(__name__)

StoreFailurePolicy = Literal["fail_closed", "fail_open"]

_STATE_GAUGE = {
    CircuitState.ON: 1.0,
    CircuitState.HALF_OPEN: 0.5,
    CircuitState.OFF: 0.0,
}


def _transition(now: datetime, state: CircuitState) -> dict[str, Any]:
    """Fields written on every state change. Counters restart from zero."""
    return {
        "state": state,
        "state_changed_at": now,
        "failure_count": 0,
        "success_count": 0,
        "trial_started_at": None,
    }


class CircuitBreakerEngine:
    """Gates operations behind manual and provider circuits.

    Manual circuits are plain switches changed only by admin commands.
    Provider circuits move between on, off and half_open based on the
    outcomes reported by callers:

        on --(failure_count >= threshold)--> off
        off --(reset timeout elapsed, observed by can_attempt)--> half_open
        half_open --(success)--> on
        half_open --(failure)--> off

    Every read-modify-write goes through ``CircuitStore.transact`` so that
    concurrent outcome reports for the same circuit never lose updates.
    """

    def __init__(
        self,
        store: CircuitStore,
        reset_timeout_seconds: float = 300.0,
        half_open_successes: int = 1,
        store_failure_policy: StoreFailurePolicy = "fail_closed",
        clock: Clock = utcnow,
    ):
        """Initialize engine.

        Args:
            store: Circuit store
            reset_timeout_seconds: Time an off provider circuit waits before a trial
            half_open_successes: Trial successes needed to close a half-open circuit
            store_failure_policy: Provider verdict when the store is unreachable
            clock: Time source
        """
        self._store = store
        self._reset_timeout = reset_timeout_seconds
        self._half_open_successes = half_open_successes
        self._store_failure_policy = store_failure_policy
        self._clock = clock

    @property
    def reset_timeout_ms(self) -> int:
        return int(self._reset_timeout * 1000)

    async def initialize(self, definitions: list[CircuitDefinition]) -> None:
        """Seed circuits. Existing circuits keep their persisted state."""
        for definition in definitions:
            created = await self._store.initialize_circuit(definition)
            record = await self._store.get(definition.circuit_id)
            if record:
                CIRCUIT_STATE.labels(circuit_id=record.circuit_id).set(_STATE_GAUGE[record.state])
            logger.info(
                "Circuit initialized" if created else "Circuit already present",
                circuit_id=definition.circuit_id,
                circuit_type=definition.circuit_type.value,
                state=record.state.value if record else None,
            )

    async def can_attempt(self, circuit_id: str) -> bool:
        """Decide whether an operation guarded by the circuit may proceed.

        For an off provider circuit whose reset timeout has elapsed this
        moves the circuit to half_open and grants the single trial.

        Args:
            circuit_id: Circuit to check

        Returns:
            True if the operation may proceed

        Raises:
            ConfigurationError: If the circuit does not exist
        """
        try:
            record = await self._store.get(circuit_id)
        except CircuitStoreError as e:
            return self._store_failure_verdict(circuit_id, None, e)

        if record is None:
            raise ConfigurationError(f"Unknown circuit: {circuit_id}")

        if not record.is_provider:
            return record.state == CircuitState.ON

        if record.state == CircuitState.ON:
            return True

        decision: dict[str, Any] = {}

        def grant_trial(current: CircuitRecord) -> dict[str, Any]:
            now = self._clock()
            decision.clear()
            decision["from"] = current.state

            if current.state == CircuitState.ON:
                decision["allowed"] = True
                return {}

            if current.state == CircuitState.HALF_OPEN:
                if self._trial_in_flight(current, now):
                    decision["allowed"] = False
                    return {}
                decision["allowed"] = True
                return {"trial_started_at": now}

            changed_at = current.state_changed_at or current.created_at
            if changed_at is not None and self._elapsed(changed_at, now) < self._reset_timeout:
                decision["allowed"] = False
                return {}

            decision["allowed"] = True
            decision["to"] = CircuitState.HALF_OPEN
            return {**_transition(now, CircuitState.HALF_OPEN), "trial_started_at": now}

        try:
            updated = await self._store.transact(circuit_id, grant_trial)
        except CircuitStoreError as e:
            return self._store_failure_verdict(circuit_id, record, e)

        if updated is None:
            raise ConfigurationError(f"Unknown circuit: {circuit_id}")

        if "to" in decision:
            self._on_transition(circuit_id, decision["from"], decision["to"], reason="reset_timeout")

        return decision["allowed"]

    async def record_success(self, circuit_id: str) -> None:
        """Report a successful operation. No-op for manual circuits."""
        decision: dict[str, Any] = {}

        def apply(current: CircuitRecord) -> dict[str, Any]:
            now = self._clock()
            decision.clear()
            if not current.is_provider:
                return {}

            success_count = current.success_count + 1
            if (
                current.state == CircuitState.HALF_OPEN
                and success_count >= self._half_open_successes
            ):
                decision["from"] = current.state
                decision["to"] = CircuitState.ON
                return {**_transition(now, CircuitState.ON), "last_success_at": now}

            changes: dict[str, Any] = {
                "success_count": success_count,
                "failure_count": 0,
                "last_success_at": now,
            }
            if current.state == CircuitState.HALF_OPEN:
                # Trial finished but more successes are needed; free the lease
                changes["trial_started_at"] = None
            return changes

        record = await self._store.transact(circuit_id, apply)
        if record is None:
            raise ConfigurationError(f"Unknown circuit: {circuit_id}")

        if "to" in decision:
            self._on_transition(circuit_id, decision["from"], decision["to"], reason="trial_succeeded")

    async def record_failure(self, circuit_id: str, error: Exception | None = None) -> None:
        """Report a failed operation. No-op for manual circuits.

        Authentication errors trip an on circuit immediately.

        Args:
            circuit_id: Circuit that guarded the failed operation
            error: The error that caused the failure, if known
        """
        decision: dict[str, Any] = {}

        def apply(current: CircuitRecord) -> dict[str, Any]:
            now = self._clock()
            decision.clear()
            if not current.is_provider:
                return {}

            failure_count = current.failure_count + 1
            threshold = 1 if isinstance(error, AuthenticationError) else current.failure_threshold

            trip = current.state == CircuitState.HALF_OPEN or (
                current.state == CircuitState.ON and failure_count >= threshold
            )
            if trip:
                decision["from"] = current.state
                decision["to"] = CircuitState.OFF
                decision["failure_count"] = failure_count
                return {**_transition(now, CircuitState.OFF), "last_failure_at": now}

            return {
                "failure_count": failure_count,
                "success_count": 0,
                "last_failure_at": now,
            }

        record = await self._store.transact(circuit_id, apply)
        if record is None:
            raise ConfigurationError(f"Unknown circuit: {circuit_id}")

        if "to" in decision:
            reason = "trial_failed" if decision["from"] == CircuitState.HALF_OPEN else "threshold"
            self._on_transition(
                circuit_id,
                decision["from"],
                decision["to"],
                reason=reason,
                failure_count=decision["failure_count"],
                error=type(error).__name__ if error else None,
            )

    async def get_status(self, circuit_id: str) -> CircuitStatus:
        """Read circuit status without changing it.

        ``can_attempt`` in the result reflects what a gate check would
        answer now, but the lazy off to half_open transition is not applied.

        Raises:
            ConfigurationError: If the circuit does not exist
        """
        record = await self._store.get(circuit_id)
        if record is None:
            raise ConfigurationError(f"Unknown circuit: {circuit_id}")
        return self._status(record)

    async def list_circuits(self, circuit_type: CircuitType | None = None) -> list[CircuitStatus]:
        """List circuit statuses, optionally filtered by type."""
        records = await self._store.list_all()
        return [
            self._status(record)
            for record in records
            if circuit_type is None or record.circuit_type == circuit_type
        ]

    async def set_state(self, circuit_id: str, state: CircuitState) -> CircuitStatus:
        """Force a circuit into a state (admin command).

        Args:
            circuit_id: Circuit to change
            state: Target state

        Returns:
            Updated status

        Raises:
            ConfigurationError: Unknown circuit, or half_open for a manual circuit
        """
        decision: dict[str, Any] = {}

        def apply(current: CircuitRecord) -> dict[str, Any]:
            decision.clear()
            if state == CircuitState.HALF_OPEN and not current.is_provider:
                decision["invalid"] = True
                return {}
            if current.state == state:
                return {}
            decision["from"] = current.state
            return _transition(self._clock(), state)

        record = await self._store.transact(circuit_id, apply)
        if record is None:
            raise ConfigurationError(f"Unknown circuit: {circuit_id}")
        if decision.get("invalid"):
            raise ConfigurationError(f"Manual circuit {circuit_id} cannot be half_open")

        if "from" in decision:
            self._on_transition(circuit_id, decision["from"], state, reason="admin")
        return self._status(record)

    async def reset(self, circuit_id: str) -> CircuitStatus:
        """Restore the default state and clear counters.

        Raises:
            ConfigurationError: If the circuit does not exist
        """
        decision: dict[str, Any] = {}

        def apply(current: CircuitRecord) -> dict[str, Any]:
            decision.clear()
            decision["from"] = current.state
            decision["to"] = current.default_state
            return _transition(self._clock(), current.default_state)

        record = await self._store.transact(circuit_id, apply)
        if record is None:
            raise ConfigurationError(f"Unknown circuit: {circuit_id}")

        if decision["from"] != decision["to"]:
            self._on_transition(circuit_id, decision["from"], decision["to"], reason="reset")
        else:
            logger.info("Circuit counters reset", circuit_id=circuit_id)
        return self._status(record)

    def _status(self, record: CircuitRecord) -> CircuitStatus:
        now = self._clock()
        if not record.is_provider:
            return ManualCircuitStatus(
                circuit_id=record.circuit_id,
                state=record.state,
                default_state=record.default_state,
                description=record.description,
                state_changed_at=record.state_changed_at,
                can_attempt=record.state == CircuitState.ON,
            )

        trial_in_flight = (
            record.state == CircuitState.HALF_OPEN and self._trial_in_flight(record, now)
        )
        if record.state == CircuitState.ON:
            can_attempt = True
        elif record.state == CircuitState.HALF_OPEN:
            can_attempt = not trial_in_flight
        else:
            changed_at = record.state_changed_at or record.created_at
            can_attempt = changed_at is None or self._elapsed(changed_at, now) >= self._reset_timeout

        return ProviderCircuitStatus(
            circuit_id=record.circuit_id,
            state=record.state,
            default_state=record.default_state,
            description=record.description,
            failure_count=record.failure_count,
            success_count=record.success_count,
            failure_threshold=record.failure_threshold,
            last_failure_at=record.last_failure_at,
            last_success_at=record.last_success_at,
            state_changed_at=record.state_changed_at,
            trial_in_flight=trial_in_flight,
            can_attempt=can_attempt,
            reset_timeout_ms=self.reset_timeout_ms,
        )

    def _trial_in_flight(self, record: CircuitRecord, now: datetime) -> bool:
        # An unreported trial lease expires after the reset timeout
        if record.trial_started_at is None:
            return False
        return self._elapsed(record.trial_started_at, now) < self._reset_timeout

    @staticmethod
    def _elapsed(since: datetime, now: datetime) -> float:
        return (now - since).total_seconds()

    def _store_failure_verdict(
        self,
        circuit_id: str,
        record: CircuitRecord | None,
        error: CircuitStoreError,
    ) -> bool:
        # Manual gates always fail closed; provider gates follow the policy
        is_provider = record.is_provider if record else circuit_id.startswith("PROVIDER_")
        allowed = is_provider and self._store_failure_policy == "fail_open"
        logger.warning(
            "Circuit store unavailable",
            circuit_id=circuit_id,
            allowed=allowed,
            policy=self._store_failure_policy if is_provider else "fail_closed",
            error=str(error),
        )
        return allowed

    def _on_transition(
        self,
        circuit_id: str,
        from_state: CircuitState,
        to_state: CircuitState,
        **context: Any,
    ) -> None:
        CIRCUIT_TRANSITIONS.labels(
            circuit_id=circuit_id,
            from_state=from_state.value,
            to_state=to_state.value,
        ).inc()
        CIRCUIT_STATE.labels(circuit_id=circuit_id).set(_STATE_GAUGE[to_state])
        log = logger.warning if to_state == CircuitState.OFF else logger.info
        log(
            "Circuit state changed",
            circuit_id=circuit_id,
            from_state=from_state.value,
            to_state=to_state.value,
            **context,
        )
