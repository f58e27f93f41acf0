"""Home Assistant websocket event source."""

import asyncio
import json
from typing import Any, Callable

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from flapcast.core.errors import HAAuthenticationError, HAConnectionError, SubscriptionError
from flapcast.core.logging import get_logger
from flapcast.models.event import HAEvent

logger = get_logger(__name__)

EventCallback = Callable[[HAEvent], None]

HANDSHAKE_TIMEOUT = 10.0
COMMAND_TIMEOUT = 10.0


def websocket_url(base_url: str) -> str:
    """Turn a Home Assistant base URL into its websocket API URL."""
    url = base_url.replace("https://", "wss://").replace("http://", "ws://")
    if not url.endswith("/api/websocket"):
        url = url.rstrip("/") + "/api/websocket"
    return url


class HomeAssistantClient:
    """Subscribes to Home Assistant events over the websocket API.

    Subscriptions are remembered by event type and replayed after an
    automatic reconnect, so callers subscribe once for the process lifetime.
    """

    def __init__(
        self,
        url: str,
        token: str,
        reconnect_delay: float = 5.0,
        max_reconnect_delay: float = 60.0,
        connector: Callable[..., Any] = connect,
    ):
        """Initialize client.

        Args:
            url: Home Assistant base URL
            token: Long-lived access token
            reconnect_delay: Initial reconnect delay in seconds
            max_reconnect_delay: Upper bound for the reconnect delay
            connector: Websocket connect function
        """
        self._url = websocket_url(url)
        self._token = token
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._connector = connector

        self._ws: ClientConnection | None = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._callbacks: dict[str, list[EventCallback]] = {}
        self._pending: dict[int, asyncio.Future] = {}
        self._next_id = 1
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        """Connect and authenticate.

        Raises:
            HAAuthenticationError: If the token is rejected
            HAConnectionError: If Home Assistant cannot be reached
        """
        self._closing = False
        await self._open()
        logger.info("Connected to Home Assistant", url=self._url)

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting. Safe to call repeatedly."""
        self._closing = True

        for task in (self._reconnect_task, self._reader_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reconnect_task = None
        self._reader_task = None

        self._fail_pending(HAConnectionError("Disconnected"))
        self._callbacks.clear()

        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
            logger.info("Disconnected from Home Assistant")

    async def subscribe_to_events(self, event_type: str, callback: EventCallback) -> None:
        """Register a callback for an event type.

        Args:
            event_type: Home Assistant event type
            callback: Called with each event; must not block

        Raises:
            SubscriptionError: If not connected or Home Assistant rejects it
        """
        if self._ws is None:
            raise SubscriptionError("Must be connected to subscribe to events", event_type)

        callbacks = self._callbacks.setdefault(event_type, [])
        first = not callbacks
        callbacks.append(callback)
        if first:
            try:
                await self._subscribe(event_type)
            except SubscriptionError:
                callbacks.remove(callback)
                raise
        logger.info("Subscribed to events", event_type=event_type)

    def unsubscribe_from_events(self, event_type: str) -> None:
        """Forget callbacks for an event type.

        The server side subscription lapses with the connection.
        """
        self._callbacks.pop(event_type, None)

    async def _open(self) -> None:
        try:
            ws = await self._connector(self._url, close_timeout=10)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise HAConnectionError(f"Failed to connect to Home Assistant: {e}") from e

        try:
            await self._authenticate(ws)
        except BaseException:
            await ws.close()
            raise

        self._ws = ws
        self._next_id = 1
        self._reader_task = asyncio.create_task(self._read_loop(ws))

        for event_type in list(self._callbacks):
            await self._subscribe(event_type)

    async def _authenticate(self, ws: ClientConnection) -> None:
        try:
            auth_required = json.loads(await asyncio.wait_for(ws.recv(), timeout=HANDSHAKE_TIMEOUT))
            if auth_required.get("type") != "auth_required":
                raise HAConnectionError(f"Unexpected Home Assistant message: {auth_required}")

            await ws.send(json.dumps({"type": "auth", "access_token": self._token}))

            auth_result = json.loads(await asyncio.wait_for(ws.recv(), timeout=HANDSHAKE_TIMEOUT))
        except (ConnectionClosed, asyncio.TimeoutError, json.JSONDecodeError) as e:
            raise HAConnectionError(f"Home Assistant handshake failed: {e}") from e

        if auth_result.get("type") == "auth_invalid":
            raise HAAuthenticationError(
                f"Home Assistant authentication failed: {auth_result.get('message', 'invalid token')}"
            )
        if auth_result.get("type") != "auth_ok":
            raise HAConnectionError(f"Unexpected Home Assistant message: {auth_result}")

    async def _subscribe(self, event_type: str) -> None:
        try:
            result = await self._command({"type": "subscribe_events", "event_type": event_type})
        except HAConnectionError as e:
            raise SubscriptionError(
                f"Failed to subscribe to event type '{event_type}': {e}", event_type
            ) from e

        if not result.get("success", False):
            error = result.get("error") or {}
            raise SubscriptionError(
                f"Failed to subscribe to event type '{event_type}': "
                f"{error.get('message', 'unknown error')}",
                event_type,
            )

    async def _command(self, message: dict[str, Any]) -> dict[str, Any]:
        if self._ws is None:
            raise HAConnectionError("Not connected")

        message_id = self._next_id
        self._next_id += 1
        future = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future

        try:
            await self._ws.send(json.dumps({**message, "id": message_id}))
            return await asyncio.wait_for(future, timeout=COMMAND_TIMEOUT)
        except (ConnectionClosed, asyncio.TimeoutError) as e:
            raise HAConnectionError(f"Command {message['type']} failed: {e}") from e
        finally:
            self._pending.pop(message_id, None)

    async def _read_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from Home Assistant")
                    continue
                self._handle_message(message)
        except ConnectionClosed as e:
            logger.warning("Home Assistant connection closed", code=e.rcvd.code if e.rcvd else None)

        # Only the active connection triggers a reconnect
        if self._ws is not ws:
            return
        self._ws = None
        self._fail_pending(HAConnectionError("Connection lost"))
        if not self._closing:
            self._reconnect_task = asyncio.create_task(self._reconnect())

    def _handle_message(self, message: dict[str, Any]) -> None:
        message_type = message.get("type")

        if message_type == "result":
            future = self._pending.get(message.get("id"))
            if future is not None and not future.done():
                future.set_result(message)
            return

        if message_type != "event":
            return

        payload = message.get("event") or {}
        event_type = payload.get("event_type")
        if not event_type:
            return

        event = HAEvent(
            event_type=event_type,
            data=payload.get("data") or {},
            origin=payload.get("origin"),
            time_fired=payload.get("time_fired"),
        )
        for callback in list(self._callbacks.get(event_type, [])):
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    "Event callback failed",
                    event_type=event_type,
                    error=str(e),
                    exc_info=True,
                )

    async def _reconnect(self) -> None:
        delay = self._reconnect_delay
        while not self._closing:
            logger.info("Reconnecting to Home Assistant", delay=delay)
            await asyncio.sleep(delay)
            try:
                await self._open()
            except HAAuthenticationError as e:
                logger.error("Home Assistant rejected the token, giving up", error=str(e))
                return
            except (HAConnectionError, SubscriptionError) as e:
                logger.warning("Reconnect failed", error=str(e))
                if self._ws is not None:
                    ws, self._ws = self._ws, None
                    await ws.close()
                delay = min(delay * 2, self._max_reconnect_delay)
                continue

            logger.info("Reconnected to Home Assistant", subscriptions=sorted(self._callbacks))
            return

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
