"""Per-event trace context for logs."""

import uuid
from contextvars import ContextVar, Token
from typing import Any

import structlog

_trace_id: ContextVar[str] = ContextVar("trace_id", default="")


def new_trace_id() -> str:
    return uuid.uuid4().hex[:16]


def current_trace_id() -> str:
    """Trace id of the event being handled, empty outside one."""
    return _trace_id.get()


class EventTrace:
    """Binds a trace id and event fields to every log line inside the block.

    Nested traces restore the outer binding on exit. Each asyncio task runs
    in a copy of the context, so concurrent events never share a trace.
    """

    def __init__(self, event_type: str, trace_id: str | None = None, **fields: Any):
        self.trace_id = trace_id or new_trace_id()
        self._fields = {"trace_id": self.trace_id, "event_type": event_type, **fields}
        self._token: Token[str] | None = None
        self._log_tokens: dict[str, Any] = {}

    def __enter__(self) -> "EventTrace":
        self._token = _trace_id.set(self.trace_id)
        self._log_tokens = dict(structlog.contextvars.bind_contextvars(**self._fields))
        return self

    def __exit__(self, *exc_info: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._log_tokens)
        if self._token is not None:
            _trace_id.reset(self._token)
            self._token = None
