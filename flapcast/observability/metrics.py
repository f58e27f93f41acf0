"""Prometheus metrics definitions."""

from prometheus_client import Counter, Gauge, Histogram

# Event metrics
EVENTS_RECEIVED = Counter(
    "flapcast_events_received_total",
    "Total number of Home Assistant events received",
    ["event_type"],
)

EVENT_HANDLER_ERRORS = Counter(
    "flapcast_event_handler_errors_total",
    "Errors caught at the event handler boundary",
    ["event_type"],
)

# Trigger metrics
TRIGGER_MATCHES = Counter(
    "flapcast_trigger_matches_total",
    "Trigger match results for state changes",
    ["trigger", "outcome"],
)

TRIGGER_RELOADS = Counter(
    "flapcast_trigger_reloads_total",
    "Trigger configuration reloads",
    ["status"],
)

# Scheduler metrics
MINOR_UPDATES = Counter(
    "flapcast_minor_updates_total",
    "Scheduled minor update runs",
    ["outcome"],
)

# Generation metrics
GENERATIONS = Counter(
    "flapcast_generations_total",
    "Generate-and-send outcomes",
    ["outcome"],
)

PROVIDER_ATTEMPTS = Counter(
    "flapcast_provider_attempts_total",
    "AI provider call attempts",
    ["provider", "outcome"],
)

PROVIDER_LATENCY = Histogram(
    "flapcast_provider_latency_seconds",
    "AI provider request latency in seconds",
    ["provider"],
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

DISPLAY_SENDS = Counter(
    "flapcast_display_sends_total",
    "Frames sent to the display device",
    ["status"],
)

# Circuit metrics
CIRCUIT_TRANSITIONS = Counter(
    "flapcast_circuit_transitions_total",
    "Circuit state transitions",
    ["circuit_id", "from_state", "to_state"],
)

CIRCUIT_STATE = Gauge(
    "flapcast_circuit_state",
    "Current circuit state (1 on, 0.5 half_open, 0 off)",
    ["circuit_id"],
)
