"""State-change trigger matching with per-trigger debounce."""

import re
import threading
import time
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Callable

from flapcast.core.errors import ConfigurationError
from flapcast.core.logging import get_logger
from flapcast.models.trigger import TriggerConfig

logger = get_logger(__name__)

_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    # Accepted for compatibility, no effect on a single search
    "g": 0,
    "y": 0,
    "u": 0,
}

EntityPredicate = Callable[[str], bool]


def is_regex_pattern(pattern: str) -> bool:
    """Check for the ``/body/flags`` form."""
    return pattern.startswith("/") and len(pattern) > 1 and "/" in pattern[1:]


def compile_entity_pattern(pattern: str) -> EntityPredicate:
    """Compile an entity pattern into a predicate.

    Forms are tried in order: regex (``/body/flags``), glob (contains ``*``
    or ``?``), exact entity id.

    Args:
        pattern: Entity pattern from a trigger

    Returns:
        Predicate over entity ids

    Raises:
        ConfigurationError: If a regex pattern is invalid
    """
    if is_regex_pattern(pattern):
        last_slash = pattern.rindex("/")
        body = pattern[1:last_slash]
        flags = 0
        for flag in pattern[last_slash + 1:]:
            if flag not in _REGEX_FLAGS:
                raise ConfigurationError(f"Unsupported regex flag '{flag}' in {pattern}")
            flags |= _REGEX_FLAGS[flag]
        try:
            regex = re.compile(body, flags)
        except re.error as e:
            raise ConfigurationError(f"Invalid regex {pattern}: {e}") from e
        return lambda entity_id: regex.search(entity_id) is not None

    if "*" in pattern or "?" in pattern:
        return lambda entity_id: fnmatchcase(entity_id, pattern)

    return lambda entity_id: entity_id == pattern


@dataclass
class MatchResult:
    """Result of matching a state change against the triggers."""

    matched: bool
    trigger: TriggerConfig | None = None
    debounced: bool = False


@dataclass
class _CompiledTrigger:
    config: TriggerConfig
    matches_entity: EntityPredicate = field(repr=False)


def _compile_all(triggers: list[TriggerConfig]) -> list[_CompiledTrigger]:
    compiled = []
    seen: set[str] = set()
    for trigger in triggers:
        if trigger.name in seen:
            raise ConfigurationError(f"Duplicate trigger name: {trigger.name}")
        seen.add(trigger.name)
        try:
            predicate = compile_entity_pattern(trigger.entity_pattern)
        except ConfigurationError as e:
            raise ConfigurationError(f"Trigger '{trigger.name}': {e}") from e
        compiled.append(_CompiledTrigger(config=trigger, matches_entity=predicate))
    return compiled


class TriggerMatcher:
    """Matches entity state changes against an ordered list of triggers.

    The first trigger whose pattern and state filter match wins, even when
    that trigger is inside its debounce window. Last-fire times are keyed by
    trigger name and survive ``update_triggers`` for names that remain.
    """

    def __init__(
        self,
        triggers: list[TriggerConfig],
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize matcher.

        Args:
            triggers: Triggers in evaluation order
            clock: Monotonic time source in seconds

        Raises:
            ConfigurationError: If any pattern is invalid or a name repeats
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._triggers = _compile_all(triggers)
        self._last_fired: dict[str, float] = {}

    @property
    def triggers(self) -> list[TriggerConfig]:
        return [t.config for t in self._triggers]

    @property
    def trigger_names(self) -> list[str]:
        return [t.config.name for t in self._triggers]

    def match(self, entity_id: str, new_state: str) -> MatchResult:
        """Match a state change.

        Args:
            entity_id: Entity that changed
            new_state: Its new state

        Returns:
            Match result; a match outside the debounce window records the fire time
        """
        with self._lock:
            for compiled in self._triggers:
                trigger = compiled.config
                if not compiled.matches_entity(entity_id):
                    continue
                if not trigger.matches_state(new_state):
                    continue

                now = self._clock()
                debounced = self._is_debounced(trigger, now)
                if not debounced:
                    self._last_fired[trigger.name] = now
                return MatchResult(matched=True, trigger=trigger, debounced=debounced)

        return MatchResult(matched=False)

    def update_triggers(self, triggers: list[TriggerConfig]) -> None:
        """Replace the trigger set.

        All patterns are compiled before anything changes, so an invalid
        pattern or a repeated name leaves the current set and debounce state
        untouched.

        Raises:
            ConfigurationError: If any pattern is invalid or a name repeats
        """
        compiled = _compile_all(triggers)
        names = {t.config.name for t in compiled}
        with self._lock:
            self._triggers = compiled
            for name in list(self._last_fired):
                if name not in names:
                    del self._last_fired[name]

        logger.info("Triggers updated", count=len(compiled), names=sorted(names))

    def cleanup(self) -> None:
        """Discard all debounce state."""
        with self._lock:
            self._last_fired.clear()

    def last_fired(self, name: str) -> float | None:
        """Last fire time for a trigger name, if any."""
        with self._lock:
            return self._last_fired.get(name)

    def _is_debounced(self, trigger: TriggerConfig, now: float) -> bool:
        if trigger.debounce_seconds <= 0:
            return False
        last = self._last_fired.get(trigger.name)
        if last is None:
            return False
        return now - last < trigger.debounce_seconds
