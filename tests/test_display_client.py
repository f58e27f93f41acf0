"""Tests for the display client and character conversion."""

import json

import httpx
import pytest

from flapcast.core.errors import (
    DisplayAuthenticationError,
    DisplayConnectionError,
    DisplayRateLimitError,
    DisplayServerError,
    DisplayTimeoutError,
    DisplayValidationError,
)
from flapcast.display.characters import (
    COLS,
    ROWS,
    char_to_code,
    layout_to_text,
    text_to_layout,
    wrap_text,
)
from flapcast.display.client import API_KEY_HEADER, DisplayClient, classify_response

BASE_URL = "http://display.local:7000"


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def scripted_client(responses: list, requests: list[httpx.Request]) -> httpx.AsyncClient:
    """HTTP client answering from a list of responses or exceptions."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        outcome = responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_display(responses: list, **kwargs) -> tuple[DisplayClient, list[httpx.Request], RecordingSleep]:
    requests: list[httpx.Request] = []
    sleep = RecordingSleep()
    display = DisplayClient(
        BASE_URL,
        "secret-key",
        client=scripted_client(responses, requests),
        sleep=sleep,
        **kwargs,
    )
    return display, requests, sleep


# Character conversion


def test_char_to_code() -> None:
    assert char_to_code(" ") == 0
    assert char_to_code("A") == 1
    assert char_to_code("z") == 26
    assert char_to_code("1") == 27
    assert char_to_code("0") == 36
    assert char_to_code("?") == 60
    assert char_to_code("🟥") == 63
    assert char_to_code("⬛") == 0
    assert char_to_code("~") == 0


def test_wrap_text_breaks_on_words() -> None:
    lines = wrap_text("THE QUICK BROWN FOX JUMPS OVER THE LAZY DOG")

    assert lines == ["THE QUICK BROWN FOX", "JUMPS OVER THE LAZY", "DOG"]
    assert all(len(line) <= COLS for line in lines)


def test_wrap_text_truncates_long_words() -> None:
    assert wrap_text("A" * 30) == ["A" * 22]


def test_text_to_layout_is_centered() -> None:
    layout = text_to_layout("HI")

    assert len(layout) == ROWS
    assert all(len(row) == COLS for row in layout)
    assert layout[2][10:12] == [8, 9]
    assert sum(code for row in layout for code in row) == 17


def test_text_to_layout_drops_rows_past_the_display() -> None:
    layout = text_to_layout("\n".join(str(n) for n in range(1, 9)))

    assert layout_to_text(layout).split("\n")[-1].strip() == "6"


def test_empty_text_is_blank_layout() -> None:
    assert text_to_layout("") == [[0] * COLS for _ in range(ROWS)]


def test_layout_to_text() -> None:
    assert layout_to_text(text_to_layout("GOOD MORNING!")).strip() == "GOOD MORNING!"


# Response classification


@pytest.mark.parametrize(
    ("status", "error_type"),
    [
        (401, DisplayAuthenticationError),
        (403, DisplayAuthenticationError),
        (429, DisplayRateLimitError),
        (500, DisplayServerError),
        (503, DisplayServerError),
        (400, DisplayValidationError),
        (404, DisplayValidationError),
    ],
)
def test_classify_response(status: int, error_type: type) -> None:
    assert isinstance(classify_response(httpx.Response(status)), error_type)


def test_classify_rate_limit_reads_retry_after() -> None:
    error = classify_response(httpx.Response(429, headers={"Retry-After": "7"}))

    assert error.retry_after == 7
    assert error.retryable is True


# Client


@pytest.mark.asyncio
async def test_send_text_posts_layout_with_api_key() -> None:
    display, requests, _ = make_display([httpx.Response(201)])

    await display.send_text("HELLO")

    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == f"{BASE_URL}/local-api/message"
    assert request.headers[API_KEY_HEADER] == "secret-key"
    assert json.loads(request.content) == text_to_layout("HELLO")
    await display.close()


@pytest.mark.asyncio
async def test_retryable_errors_are_retried_with_backoff() -> None:
    display, requests, sleep = make_display(
        [httpx.Response(503), httpx.Response(502), httpx.Response(200)],
        max_retries=2,
    )

    await display.send_layout(text_to_layout("HI"))

    assert len(requests) == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries() -> None:
    display, requests, _ = make_display([httpx.Response(500)] * 3, max_retries=2)

    with pytest.raises(DisplayServerError):
        await display.send_layout(text_to_layout("HI"))

    assert len(requests) == 3


@pytest.mark.asyncio
async def test_auth_failure_is_not_retried() -> None:
    display, requests, sleep = make_display([httpx.Response(401)])

    with pytest.raises(DisplayAuthenticationError):
        await display.send_layout(text_to_layout("HI"))

    assert len(requests) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_rate_limit_waits_for_retry_after() -> None:
    display, _, sleep = make_display(
        [httpx.Response(429, headers={"Retry-After": "4"}), httpx.Response(200)],
        max_backoff=10.0,
    )

    await display.send_layout(text_to_layout("HI"))

    assert sleep.delays == [4.0]


@pytest.mark.asyncio
async def test_retry_delay_is_capped() -> None:
    display, _, sleep = make_display(
        [httpx.Response(429, headers={"Retry-After": "120"}), httpx.Response(200)],
        max_backoff=10.0,
    )

    await display.send_layout(text_to_layout("HI"))

    assert sleep.delays == [10.0]


@pytest.mark.asyncio
async def test_transport_errors_are_classified() -> None:
    display, _, _ = make_display([httpx.ConnectError("refused")], max_retries=0)
    with pytest.raises(DisplayConnectionError):
        await display.send_layout(text_to_layout("HI"))

    display, _, _ = make_display([httpx.ReadTimeout("slow")], max_retries=0)
    with pytest.raises(DisplayTimeoutError):
        await display.send_layout(text_to_layout("HI"))


@pytest.mark.asyncio
async def test_read_layout_and_validate_connection() -> None:
    layout = text_to_layout("HI")
    display, requests, _ = make_display([httpx.Response(200, json=layout), httpx.Response(401)])

    assert await display.read_layout() == layout
    assert requests[0].method == "GET"
    assert await display.validate_connection() is False


@pytest.mark.asyncio
async def test_unreadable_layout_is_a_validation_error() -> None:
    display, requests, sleep = make_display(
        [
            httpx.Response(200, text="ok", headers={"Content-Type": "text/plain"}),
            httpx.Response(200, json={"message": "ok"}),
            httpx.Response(200, text="ok"),
        ]
    )

    with pytest.raises(DisplayValidationError, match="Unreadable layout"):
        await display.read_layout()
    with pytest.raises(DisplayValidationError, match="list of rows"):
        await display.read_layout()
    assert await display.validate_connection() is False
    assert len(requests) == 3
    assert sleep.delays == []
