"""Split-flap display local API client."""

import asyncio
from typing import Awaitable, Callable

import httpx

from flapcast.core.errors import (
    DisplayAuthenticationError,
    DisplayConnectionError,
    DisplayError,
    DisplayRateLimitError,
    DisplayServerError,
    DisplayTimeoutError,
    DisplayValidationError,
)
from flapcast.core.logging import get_logger
from flapcast.display.characters import text_to_layout
from flapcast.observability.metrics import DISPLAY_SENDS

logger = get_logger(__name__)

API_KEY_HEADER = "X-Vestaboard-Local-Api-Key"
MESSAGE_PATH = "/local-api/message"


def classify_response(response: httpx.Response) -> DisplayError:
    """Map an unsuccessful response to a display error."""
    status = response.status_code
    reason = response.reason_phrase

    if status in (401, 403):
        return DisplayAuthenticationError(f"Authentication failed: {reason}", status)
    if status == 429:
        retry_after = response.headers.get("Retry-After")
        return DisplayRateLimitError(
            f"Rate limit exceeded: {reason}",
            int(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if status >= 500:
        return DisplayServerError(f"Server error: {reason}", status)
    return DisplayValidationError(f"HTTP error {status}: {reason}", status)


class DisplayClient:
    """Sends frames to the display over its local HTTP API.

    Retryable failures (timeouts, connection errors, 429 and 5xx) are
    retried with exponential backoff; authentication and validation
    failures are raised at once.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 5.0,
        max_retries: int = 2,
        backoff_base: float = 1.0,
        max_backoff: float = 10.0,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize client.

        Args:
            base_url: Display base URL
            api_key: Local API key
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt
            backoff_base: First retry delay in seconds
            max_backoff: Upper bound for the retry delay
            client: HTTP client to use instead of creating one
            sleep: Delay function used between attempts
        """
        self._base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._max_backoff = max_backoff
        self._sleep = sleep
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {API_KEY_HEADER: api_key}
        self._timeout = timeout

    async def send_text(self, text: str) -> None:
        """Render text and send it."""
        await self.send_layout(text_to_layout(text))

    async def send_layout(self, layout: list[list[int]]) -> None:
        """Send a 6x22 grid of character codes.

        Raises:
            DisplayError: After the last failed attempt, or at once if not retryable
        """
        try:
            await self._with_retry(self._post_layout, layout)
        except DisplayError:
            DISPLAY_SENDS.labels(status="failed").inc()
            raise
        DISPLAY_SENDS.labels(status="success").inc()

    async def read_layout(self) -> list[list[int]]:
        """Read the grid currently shown."""
        return await self._with_retry(self._get_layout)

    async def validate_connection(self) -> bool:
        """Check that the display answers with the configured key."""
        try:
            await self.read_layout()
        except DisplayError as e:
            logger.warning("Display not reachable", error=str(e))
            return False
        return True

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()

    async def _post_layout(self, layout: list[list[int]]) -> None:
        response = await self._request("POST", json=layout)
        if response.is_error:
            raise classify_response(response)

    async def _get_layout(self) -> list[list[int]]:
        response = await self._request("GET")
        if response.is_error:
            raise classify_response(response)
        try:
            layout = response.json()
        except ValueError as e:
            raise DisplayValidationError(f"Unreadable layout: {e}", response.status_code) from e
        if not isinstance(layout, list):
            raise DisplayValidationError("Unreadable layout: expected a list of rows", response.status_code)
        return layout

    async def _request(self, method: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                f"{self._base_url}{MESSAGE_PATH}",
                headers=self._headers,
                timeout=self._timeout,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise DisplayTimeoutError(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise DisplayConnectionError(f"Connection error: {e}") from e

    async def _with_retry(self, operation, *args):
        attempts = self._max_retries + 1
        for attempt in range(attempts):
            try:
                return await operation(*args)
            except DisplayError as e:
                if not e.retryable or attempt == attempts - 1:
                    logger.error(
                        "Display request failed",
                        error=str(e),
                        error_type=type(e).__name__,
                        attempt=attempt + 1,
                    )
                    raise

                delay = min(self._backoff_base * 2**attempt, self._max_backoff)
                if isinstance(e, DisplayRateLimitError) and e.retry_after is not None:
                    delay = min(max(delay, e.retry_after), self._max_backoff)
                logger.warning(
                    "Display request failed, retrying",
                    error=str(e),
                    attempt=attempt + 1,
                    delay=delay,
                )
                await self._sleep(delay)
