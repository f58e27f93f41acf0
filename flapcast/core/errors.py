"""Exception hierarchy shared across the service."""

from dataclasses import dataclass
from datetime import datetime


class FlapCastError(Exception):
    """Base class for all service errors."""


class ConfigurationError(FlapCastError):
    """Invalid or inconsistent configuration, reported at load time."""


class CircuitStoreError(FlapCastError):
    """The circuit store could not be read or written."""


# AI providers


class ProviderError(FlapCastError):
    """Base error for AI provider calls.

    Attributes:
        provider: Provider name that raised the error
        status_code: HTTP status code if one was returned
        retryable: Whether the call may succeed if attempted again
    """

    retryable = False

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class RateLimitError(ProviderError):
    """Provider quota exceeded (429)."""

    retryable = True


class OverloadedError(ProviderError):
    """Provider unavailable or at capacity (5xx)."""

    retryable = True


class ProviderTimeoutError(ProviderError):
    """Provider did not answer within the configured timeout."""

    retryable = True


class ProviderConnectionError(ProviderError):
    """Provider could not be reached."""

    retryable = True


class AuthenticationError(ProviderError):
    """Credentials rejected (401/403). Never retried."""


class InvalidRequestError(ProviderError):
    """Request rejected as invalid (400 and other 4xx). Never retried."""


@dataclass
class FailedAttempt:
    """A single failed generation attempt."""

    provider: str
    attempt: int
    error: Exception
    timestamp: datetime


class RetryExhaustedError(FlapCastError):
    """All generation attempts failed, or no provider circuit allowed an attempt."""

    def __init__(self, attempts: list[FailedAttempt]):
        self.attempts = attempts
        if attempts:
            providers = ", ".join(dict.fromkeys(a.provider for a in attempts))
            message = (
                f"All retry attempts exhausted. Tried {len(attempts)} attempts "
                f"across providers: {providers}"
            )
        else:
            message = "No provider available: all provider circuits are open"
        super().__init__(message)

    @property
    def all_circuits_open(self) -> bool:
        """True when no attempt was made because every circuit was open."""
        return not self.attempts


# Display device


class DisplayError(FlapCastError):
    """Base error for display device calls."""

    retryable = False


class DisplayAuthenticationError(DisplayError):
    """Display rejected the API key."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DisplayValidationError(DisplayError):
    """Display rejected the payload."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DisplayConnectionError(DisplayError):
    """Display could not be reached."""

    retryable = True


class DisplayTimeoutError(DisplayError):
    """Display did not answer within the configured timeout."""

    retryable = True


class DisplayRateLimitError(DisplayError):
    """Display is throttling requests."""

    retryable = True

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class DisplayServerError(DisplayError):
    """Display answered with a 5xx status."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# Home Assistant


class HomeAssistantError(FlapCastError):
    """Base error for the Home Assistant event source."""


class HAAuthenticationError(HomeAssistantError):
    """Access token rejected. Not retried by the reconnect loop."""


class HAConnectionError(HomeAssistantError):
    """Websocket could not be opened or was lost."""


class SubscriptionError(HomeAssistantError):
    """Event subscription was rejected."""

    def __init__(self, message: str, event_type: str):
        super().__init__(message)
        self.event_type = event_type
