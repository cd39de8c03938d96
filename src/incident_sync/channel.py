"""
Push channel adapter.

Maintains one authenticated WebSocket connection to the incident server with:
- JSON frame envelope ({"event": ..., "data": ...})
- Per-kind event subscription
- Reconnection with bounded, exponentially growing delays
- Connectivity transitions (connected / disconnected / error)
- Outbound frames with acknowledgement callbacks
"""

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from src.core.config import settings

from .errors import ChannelConnectionError

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Any]
TransitionListener = Callable[["ChannelTransition", Optional[Exception]], Any]

BROADCAST_EVENT = "notification:broadcast"


class ChannelState(Enum):
    """Current connection state."""
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"


class ChannelTransition(str, Enum):
    """Connectivity transitions reported to listeners."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class ChannelFrame:
    """
    Wire envelope for push channel messages.

    Attributes:
        event: Event name (e.g. ``incident:created``).
        data: Event payload.
        ack_id: Set on outbound frames expecting an acknowledgement.
    """
    event: str
    data: Any = None
    ack_id: Optional[int] = None

    def to_json(self) -> str:
        """Serializes the frame to a JSON string."""
        body: Dict[str, Any] = {"event": self.event, "data": self.data}
        if self.ack_id is not None:
            body["ackId"] = self.ack_id
        return json.dumps(body)


@dataclass
class BroadcastRequest:
    """Outbound ``notification:broadcast`` payload."""
    title: str
    message: str
    type: str = "info"
    targets: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "targets": list(self.targets),
        }


class BackoffStrategy:
    """Helper to calculate exponential backoff with jitter."""

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        jitter: float = 0.1,
        max_jitter: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        """
        Args:
            base_delay: Delay for attempt zero (seconds).
            max_delay: Cap on the exponential part (seconds).
            jitter: Jitter as a fraction of the delay.
            max_jitter: Absolute jitter ceiling; overrides ``jitter``.
            max_attempts: Attempts allowed before ``exhausted``.
        """
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.max_jitter = max_jitter
        self.max_attempts = max_attempts
        self.attempts = 0

    def base_delay_for(self, attempt: int) -> float:
        """min(max, base * 2^attempt), without jitter."""
        return min(self.max_delay, self.base_delay * (2 ** attempt))

    def jitter_for(self, delay: float) -> float:
        """Random jitter in (0, ceiling]."""
        ceiling = self.max_jitter if self.max_jitter is not None else delay * self.jitter
        return ceiling * (1.0 - random.random())

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay_for(attempt)
        return delay + self.jitter_for(delay)

    def get_delay(self) -> float:
        """Delay for the next attempt; advances the attempt counter."""
        delay = self.delay_for(self.attempts)
        self.attempts += 1
        return delay

    @property
    def exhausted(self) -> bool:
        return self.max_attempts is not None and self.attempts >= self.max_attempts

    def reset(self):
        """Resets the attempt counter."""
        self.attempts = 0


class PushChannel:
    """
    Manages the lifecycle of the push connection.

    Features:
    - Auto-reconnection with bounded exponential backoff.
    - Per-kind handler registry.
    - Connectivity transition listeners.
    - Acknowledged outbound emits.

    Authentication failures are reported as an ERROR transition and never
    raised to callers.
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        auth_token: str = "",
        reconnect_delay: Optional[float] = None,
        reconnect_delay_max: Optional[float] = None,
        reconnect_attempts: Optional[int] = None,
        connect_timeout: Optional[float] = None,
        ack_timeout: Optional[float] = None,
    ):
        """
        Args:
            uri: WebSocket endpoint. Defaults to settings.ws_url.
            auth_token: Bearer token sent on the handshake.
            reconnect_delay: Delay floor between reconnect attempts (seconds).
            reconnect_delay_max: Delay ceiling (seconds).
            reconnect_attempts: Reconnect attempts before giving up.
            connect_timeout: Handshake timeout (seconds).
            ack_timeout: Default wait for outbound acknowledgements (seconds).
        """
        self.uri = uri or settings.ws_url
        self.auth_token = auth_token
        self.connect_timeout = connect_timeout or settings.connect_timeout
        self.ack_timeout = ack_timeout or settings.broadcast_ack_timeout

        self._backoff = BackoffStrategy(
            base_delay=reconnect_delay or settings.reconnect_delay,
            max_delay=reconnect_delay_max or settings.reconnect_delay_max,
            max_attempts=reconnect_attempts or settings.reconnect_attempts,
        )

        self._state = ChannelState.DISCONNECTED
        self._running = False
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._task: Optional[asyncio.Task] = None

        self._handlers: Dict[str, List[EventHandler]] = {}
        self._transition_listeners: List[TransitionListener] = []
        self._pending_acks: Dict[int, asyncio.Future] = {}
        self._next_ack_id = 0

    @property
    def state(self) -> ChannelState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ChannelState.CONNECTED

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Starts the connection loop in the background."""
        if self._running:
            return

        self._running = True
        self._backoff.reset()
        logger.info(f"Starting push channel to {self.uri}")
        self._task = asyncio.create_task(self._connection_loop())

    async def stop(self) -> None:
        """Stops the channel and closes the connection."""
        self._running = False

        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        # a drop seen by the loop during close was already reported
        was_connected = self.is_connected

        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

        self._fail_pending_acks(ChannelConnectionError("Channel stopped"))
        self._state = ChannelState.DISCONNECTED
        if was_connected:
            await self._emit_transition(ChannelTransition.DISCONNECTED)
        logger.info("Push channel stopped.")

    async def _connection_loop(self) -> None:
        """Main loop handling connection, drops and bounded reconnection."""
        while self._running:
            try:
                self._state = (
                    ChannelState.CONNECTING
                    if self._backoff.attempts == 0
                    else ChannelState.RECONNECTING
                )
                await self._open_connection()

                self._backoff.reset()
                self._state = ChannelState.CONNECTED
                logger.info("Push channel connected.")
                await self._emit_transition(ChannelTransition.CONNECTED)

                await self._listen()
            except asyncio.CancelledError:
                raise
            except ChannelConnectionError as e:
                await self._handle_failure(e)
            except Exception as e:
                await self._handle_failure(ChannelConnectionError(str(e)))

            if not self._running:
                break

            if self._backoff.exhausted:
                logger.error(
                    f"Push channel gave up after {self._backoff.attempts} reconnect attempts"
                )
                self._state = ChannelState.DISCONNECTED
                self._running = False
                break

            wait_time = self._backoff.get_delay()
            self._state = ChannelState.RECONNECTING
            logger.info(f"Reconnecting in {wait_time:.2f} seconds...")
            await asyncio.sleep(wait_time)

    async def _open_connection(self) -> None:
        """Performs the authenticated WebSocket handshake."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

        headers = {}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(self.uri, headers=headers, heartbeat=25.0),
                timeout=self.connect_timeout,
            )
        except aiohttp.WSServerHandshakeError as e:
            if e.status in (401, 403):
                raise ChannelConnectionError(f"Authentication rejected ({e.status})") from e
            raise ChannelConnectionError(f"Handshake failed ({e.status})") from e
        except asyncio.TimeoutError as e:
            raise ChannelConnectionError("Handshake timed out") from e
        except (aiohttp.ClientError, OSError) as e:
            raise ChannelConnectionError(f"Connection failed: {e}") from e

    async def _listen(self) -> None:
        """Reads frames until the socket closes."""
        ws = self._ws
        if ws is None:
            raise ChannelConnectionError("No socket")

        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self.handle_incoming_raw(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ChannelConnectionError(f"Socket error: {ws.exception()}")

        raise ChannelConnectionError("Connection closed by server")

    async def _handle_failure(self, error: ChannelConnectionError) -> None:
        was_connected = self.is_connected
        self._state = ChannelState.DISCONNECTED
        self._ws = None
        self._fail_pending_acks(error)

        if was_connected:
            logger.warning(f"Push channel dropped: {error}")
            await self._emit_transition(ChannelTransition.DISCONNECTED, error)
        else:
            logger.warning(f"Push channel connection error: {error}")
            await self._emit_transition(ChannelTransition.ERROR, error)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, kind: str, handler: EventHandler) -> None:
        """Register a handler (sync or async) for one event kind."""
        key = getattr(kind, "value", kind)
        self._handlers.setdefault(key, []).append(handler)
        logger.debug(f"Subscribed handler to {key}")

    def unsubscribe(self, kind: str, handler: Optional[EventHandler] = None) -> None:
        """Remove one handler, or every handler of the kind when omitted."""
        key = getattr(kind, "value", kind)
        if handler is None:
            self._handlers.pop(key, None)
            return
        handlers = self._handlers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(key, None)

    def add_transition_listener(self, listener: TransitionListener) -> None:
        self._transition_listeners.append(listener)

    async def _emit_transition(
        self,
        transition: ChannelTransition,
        error: Optional[Exception] = None,
    ) -> None:
        for listener in list(self._transition_listeners):
            await self._safe_call(listener, transition, error)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_incoming_raw(self, raw_data: str) -> None:
        """
        Called when raw data is received from the socket.
        Resolves acknowledgements and dispatches events to handlers.
        """
        try:
            frame = json.loads(raw_data)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Received malformed frame: {e}")
            return

        if not isinstance(frame, dict):
            logger.warning("Received non-object frame")
            return

        if "ack" in frame:
            future = self._pending_acks.pop(frame.get("ack"), None)
            if future is not None and not future.done():
                future.set_result(frame.get("data"))
            return

        event = frame.get("event")
        if not event:
            logger.warning("Received frame without event name")
            return

        for handler in list(self._handlers.get(event, [])):
            await self._safe_call(handler, frame.get("data"))

    async def _safe_call(self, callback: Callable, *args: Any) -> None:
        """Wraps callback execution with error handling."""
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.exception(f"Push channel callback failed: {e}")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def emit_with_ack(
        self,
        event: str,
        data: Any,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send a frame and wait for the server's acknowledgement.

        Raises:
            ChannelConnectionError: not connected, socket dropped, or timeout.
        """
        if not self.is_connected or self._ws is None:
            raise ChannelConnectionError("Push channel is not connected")

        self._next_ack_id += 1
        ack_id = self._next_ack_id
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_acks[ack_id] = future

        try:
            await self._ws.send_str(ChannelFrame(event=event, data=data, ack_id=ack_id).to_json())
            return await asyncio.wait_for(future, timeout or self.ack_timeout)
        except asyncio.TimeoutError as e:
            raise ChannelConnectionError(f"No acknowledgement for {event}") from e
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise ChannelConnectionError(f"Failed to send {event}: {e}") from e
        finally:
            self._pending_acks.pop(ack_id, None)

    async def send_broadcast(self, request: BroadcastRequest) -> bool:
        """Emit ``notification:broadcast``; True when the server acks success."""
        try:
            ack = await self.emit_with_ack(BROADCAST_EVENT, request.to_payload())
        except ChannelConnectionError as e:
            logger.warning(f"Broadcast '{request.title}' not delivered: {e}")
            return False

        success = isinstance(ack, dict) and bool(ack.get("success"))
        if not success:
            logger.warning(f"Broadcast '{request.title}' rejected by server: {ack}")
        return success

    def _fail_pending_acks(self, error: Exception) -> None:
        for future in self._pending_acks.values():
            if not future.done():
                future.set_exception(error)
        self._pending_acks.clear()


__all__ = [
    "ChannelState",
    "ChannelTransition",
    "ChannelFrame",
    "BroadcastRequest",
    "BackoffStrategy",
    "PushChannel",
    "BROADCAST_EVENT",
]
