"""Tests for trigger matching and debounce."""

import pytest

from flapcast.core.errors import ConfigurationError
from flapcast.engine.trigger_matcher import TriggerMatcher, compile_entity_pattern, is_regex_pattern
from flapcast.models.trigger import TriggerConfig


def make_trigger(name: str, pattern: str, **kwargs) -> TriggerConfig:
    return TriggerConfig(name=name, entity_pattern=pattern, **kwargs)


def test_glob_trigger_debounces_within_window(monotonic) -> None:
    matcher = TriggerMatcher([make_trigger("t1", "light.*", debounce_seconds=60)], clock=monotonic)

    first = matcher.match("light.kitchen", "on")
    assert first.matched is True
    assert first.debounced is False
    assert first.trigger.name == "t1"

    monotonic.advance(30)
    second = matcher.match("light.kitchen", "on")
    assert second.matched is True
    assert second.debounced is True

    monotonic.advance(31)
    third = matcher.match("light.kitchen", "on")
    assert third.matched is True
    assert third.debounced is False


def test_debounced_attempt_does_not_extend_window(monotonic) -> None:
    matcher = TriggerMatcher([make_trigger("t1", "light.*", debounce_seconds=60)], clock=monotonic)

    matcher.match("light.kitchen", "on")
    fired_at = matcher.last_fired("t1")

    monotonic.advance(59)
    assert matcher.match("light.kitchen", "on").debounced is True
    assert matcher.last_fired("t1") == fired_at

    monotonic.advance(1)
    assert matcher.match("light.kitchen", "on").debounced is False


def test_zero_debounce_never_debounces(monotonic) -> None:
    matcher = TriggerMatcher([make_trigger("t1", "light.*")], clock=monotonic)

    assert matcher.match("light.kitchen", "on").debounced is False
    assert matcher.match("light.kitchen", "on").debounced is False


def test_regex_trigger_matches() -> None:
    matcher = TriggerMatcher([make_trigger("temps", r"/^sensor\.temp_\d+$/")])

    assert matcher.match("sensor.temp_42", "21").matched is True
    assert matcher.match("sensor.temperature", "21").matched is False


def test_regex_flags() -> None:
    matcher = TriggerMatcher([make_trigger("people", r"/^person\.(john|jane)$/i")])

    assert matcher.match("PERSON.John", "home").matched is True
    assert matcher.match("person.bob", "home").matched is False


def test_regex_uses_search_semantics() -> None:
    matcher = TriggerMatcher([make_trigger("doors", "/door/")])

    assert matcher.match("binary_sensor.front_door", "on").matched is True


def test_exact_trigger_matches_only_exact_entity() -> None:
    matcher = TriggerMatcher([make_trigger("john", "person.john")])

    assert matcher.match("person.john", "home").matched is True
    assert matcher.match("person.johnny", "home").matched is False


def test_glob_question_mark_matches_single_character() -> None:
    matcher = TriggerMatcher([make_trigger("lights", "light.lamp_?")])

    assert matcher.match("light.lamp_1", "on").matched is True
    assert matcher.match("light.lamp_12", "on").matched is False


def test_state_filter_string_and_list() -> None:
    matcher = TriggerMatcher(
        [
            make_trigger("door", "binary_sensor.door", state_filter="on"),
            make_trigger("presence", "person.*", state_filter=["home", "away"]),
        ]
    )

    assert matcher.match("binary_sensor.door", "on").matched is True
    assert matcher.match("binary_sensor.door", "off").matched is False
    assert matcher.match("person.jane", "away").matched is True
    assert matcher.match("person.jane", "unknown").matched is False


def test_first_match_wins_even_when_debounced(monotonic) -> None:
    matcher = TriggerMatcher(
        [
            make_trigger("specific", "light.kitchen", debounce_seconds=60),
            make_trigger("general", "light.*"),
        ],
        clock=monotonic,
    )

    assert matcher.match("light.kitchen", "on").trigger.name == "specific"
    result = matcher.match("light.kitchen", "on")
    assert result.trigger.name == "specific"
    assert result.debounced is True

    assert matcher.match("light.hall", "on").trigger.name == "general"


def test_state_filter_mismatch_falls_through_to_next_trigger() -> None:
    matcher = TriggerMatcher(
        [
            make_trigger("on_only", "light.kitchen", state_filter="on"),
            make_trigger("any", "light.*"),
        ]
    )

    assert matcher.match("light.kitchen", "off").trigger.name == "any"


def test_empty_trigger_set_never_matches() -> None:
    result = TriggerMatcher([]).match("light.kitchen", "on")

    assert result.matched is False
    assert result.trigger is None
    assert result.debounced is False


def test_invalid_regex_fails_at_construction() -> None:
    with pytest.raises(ConfigurationError, match="broken"):
        TriggerMatcher([make_trigger("broken", "/([a-z/")])


def test_unsupported_regex_flag_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        compile_entity_pattern("/light/x")


def test_is_regex_pattern() -> None:
    assert is_regex_pattern("/a/") is True
    assert is_regex_pattern("/a/i") is True
    assert is_regex_pattern("/") is False
    assert is_regex_pattern("/light") is False
    assert is_regex_pattern("light.*") is False


def test_update_triggers_keeps_and_purges_debounce_state(monotonic) -> None:
    matcher = TriggerMatcher(
        [
            make_trigger("t1", "light.*", debounce_seconds=60),
            make_trigger("t2", "switch.*", debounce_seconds=60),
        ],
        clock=monotonic,
    )
    matcher.match("light.kitchen", "on")
    matcher.match("switch.fan", "on")

    matcher.update_triggers(
        [
            make_trigger("t1", "light.*", debounce_seconds=60),
            make_trigger("t3", "switch.*", debounce_seconds=60),
        ]
    )

    assert matcher.last_fired("t1") is not None
    assert matcher.last_fired("t2") is None
    assert matcher.match("light.kitchen", "on").debounced is True
    assert matcher.match("switch.fan", "on").debounced is False
    assert matcher.trigger_names == ["t1", "t3"]


def test_update_with_invalid_pattern_keeps_previous_set(monotonic) -> None:
    matcher = TriggerMatcher([make_trigger("t1", "light.*", debounce_seconds=60)], clock=monotonic)
    matcher.match("light.kitchen", "on")

    with pytest.raises(ConfigurationError):
        matcher.update_triggers([make_trigger("t2", "switch.*"), make_trigger("bad", "/(/")])

    assert matcher.trigger_names == ["t1"]
    assert matcher.last_fired("t1") is not None


def test_cleanup_is_idempotent(monotonic) -> None:
    matcher = TriggerMatcher([make_trigger("t1", "light.*", debounce_seconds=60)], clock=monotonic)
    matcher.match("light.kitchen", "on")

    matcher.cleanup()
    assert matcher.last_fired("t1") is None
    matcher.cleanup()
    assert matcher.last_fired("t1") is None

    assert matcher.match("light.kitchen", "on").debounced is False
    assert matcher.trigger_names == ["t1"]


def test_duplicate_names_fail_at_construction() -> None:
    with pytest.raises(ConfigurationError, match="Duplicate trigger name: t1"):
        TriggerMatcher([make_trigger("t1", "light.*"), make_trigger("t1", "switch.*")])


def test_update_with_duplicate_names_keeps_previous_set(monotonic) -> None:
    matcher = TriggerMatcher([make_trigger("t1", "light.*", debounce_seconds=60)], clock=monotonic)
    matcher.match("light.kitchen", "on")

    with pytest.raises(ConfigurationError, match="Duplicate trigger name: t2"):
        matcher.update_triggers([make_trigger("t2", "light.*"), make_trigger("t2", "switch.*")])

    assert matcher.trigger_names == ["t1"]
    assert matcher.last_fired("t1") is not None


def test_python_only_regex_syntax_is_required() -> None:
    with pytest.raises(ConfigurationError):
        TriggerMatcher([make_trigger("t1", "/^(?<who>person)\\..*$/")])
