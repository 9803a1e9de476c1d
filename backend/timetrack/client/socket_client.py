"""
Realtime connection - client side of the per-user event room.

Connection sub-machine::

    disconnected -> connecting -> connected
    connected -> reconnecting -> connected | failed
    connecting -> reconnecting    (first dial refused; same retry budget)

Reconnects back off exponentially (1s, 2s, 4s ... capped at 30s) and give up
after ``max_attempts`` consecutive failures. A 4401 close or a 401/403
handshake response means the credential is bad; retrying cannot help, so the
connection goes straight to ``failed``. The server authenticates after the
handshake, so a socket only counts as ``connected`` once it has delivered a
frame or stayed open for ``confirm_timeout`` seconds.
"""

import asyncio
import inspect
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from timetrack.errors import AuthError, ValidationError
from timetrack.models.events import EventName, decode_event
from timetrack.utils.logger import logger

CLOSE_AUTH_FAILED = 4401

EventHandler = Callable[[Any], Union[None, Awaitable[None]]]
StateListener = Callable[["ConnectionState", Optional[str]], Union[None, Awaitable[None]]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


async def _default_connector(url: str):
    return await websockets.connect(url, open_timeout=10, ping_interval=20)


def _close_info(exc: ConnectionClosed) -> Tuple[int, str]:
    rcvd = getattr(exc, "rcvd", None)
    if rcvd is not None:
        return rcvd.code, rcvd.reason
    return 1006, ""


def _handshake_status(exc: Exception) -> Optional[int]:
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    return status


async def _call(callback, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class RealtimeConnection:
    def __init__(
        self,
        url: str,
        token_provider: Callable[[], Optional[str]],
        connector: Optional[Callable[[str], Awaitable[Any]]] = None,
        max_attempts: int = 10,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        confirm_timeout: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url
        self._token_provider = token_provider
        self._connector = connector or _default_connector
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.confirm_timeout = confirm_timeout
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self.failure_reason: Optional[str] = None
        self.attempts = 0
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._state_listeners: List[StateListener] = []
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    # ---- subscriptions ----

    def on(self, event: Union[EventName, str], handler: EventHandler) -> Callable[[], None]:
        """Subscribe to one event kind. Returns an unsubscribe callable."""
        name = event.value if isinstance(event, EventName) else event
        self._handlers.setdefault(name, []).append(handler)

        def unsubscribe():
            handlers = self._handlers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    async def _set_state(self, state: ConnectionState, reason: Optional[str] = None) -> None:
        if state == self.state and reason == self.failure_reason:
            return
        logger.info("Realtime connection %s -> %s%s", self.state.value, state.value, f" ({reason})" if reason else "")
        self.state = state
        self.failure_reason = reason if state == ConnectionState.FAILED else None
        for listener in list(self._state_listeners):
            try:
                await _call(listener, state, reason)
            except Exception as e:
                logger.error("Connection state listener failed: %s", e)

    # ---- lifecycle ----

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def build_url(self, token: str) -> str:
        sep = "&" if "?" in self.url else "?"
        return f"{self.url}{sep}{urlencode({'token': token})}"

    async def connect(self) -> None:
        """Start the connection loop if it is not already running."""
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self.attempts = 0
        self._task = asyncio.create_task(self._run())

    async def disconnect(self) -> None:
        self._closing = True
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug("Socket close failed: %s", e)
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._set_state(ConnectionState.DISCONNECTED)

    async def wait_closed(self) -> None:
        """Wait until the loop ends (failed or disconnected)."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def send_ping(self) -> None:
        if self._ws is not None:
            await self._ws.send(json.dumps({"type": "ping"}))

    async def _run(self) -> None:
        await self._set_state(ConnectionState.CONNECTING)
        while not self._closing:
            token = self._token_provider()
            if not token:
                await self._set_state(ConnectionState.FAILED, AuthError.TOKEN_MISSING)
                return

            try:
                ws = await self._connector(self.build_url(token))
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                status = _handshake_status(e)
                if status in (401, 403):
                    await self._set_state(ConnectionState.FAILED, AuthError.TOKEN_INVALID)
                    return
                logger.warning("Realtime connect failed: %s", type(e).__name__)
                if not await self._schedule_retry():
                    return
                continue

            self._ws = ws
            code, reason, first = await self._confirm(ws)
            if code is None:
                self.attempts = 0
                await self._set_state(ConnectionState.CONNECTED)
                if first is not None:
                    await self._dispatch(first)
                code, reason = await self._read_loop(ws)
            self._ws = None

            if self._closing:
                return
            if code == CLOSE_AUTH_FAILED:
                await self._set_state(ConnectionState.FAILED, reason or AuthError.TOKEN_INVALID)
                return
            logger.info("Realtime socket closed (code=%s reason=%s)", code, reason)
            if not await self._schedule_retry():
                return

    async def _schedule_retry(self) -> bool:
        self.attempts += 1
        if self.attempts > self.max_attempts:
            await self._set_state(ConnectionState.FAILED, "max_attempts_exceeded")
            return False
        await self._set_state(ConnectionState.RECONNECTING)
        delay = min(self.base_delay * (2 ** (self.attempts - 1)), self.max_delay)
        await self._sleep(delay)
        return not self._closing

    async def _confirm(self, ws) -> Tuple[Optional[int], str, Any]:
        """Wait out the window in which the server may still reject the socket.

        The server accepts before it authenticates, so a bad token shows up as
        a 4401 close right after the handshake. Returns
        ``(None, "", first_frame)`` once the socket is confirmed (a frame or a
        quiet ``confirm_timeout``), else the close code and reason.
        """
        try:
            first = await asyncio.wait_for(ws.recv(), timeout=self.confirm_timeout)
        except asyncio.TimeoutError:
            return None, "", None
        except ConnectionClosed as exc:
            code, reason = _close_info(exc)
            return code, reason, None
        except OSError as e:
            logger.warning("Realtime socket read failed: %s", e)
            return 1006, "", None
        return None, "", first

    async def _read_loop(self, ws) -> Tuple[int, str]:
        while True:
            try:
                raw = await ws.recv()
            except ConnectionClosed as exc:
                return _close_info(exc)
            except OSError as e:
                logger.warning("Realtime socket read failed: %s", e)
                return 1006, ""
            await self._dispatch(raw)

    async def _dispatch(self, raw: Union[str, bytes]) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Dropping non-JSON realtime frame")
            return
        if not isinstance(message, dict) or "type" in message:
            # Control frames (pong) carry "type" instead of "event".
            return
        try:
            event = decode_event(message)
        except ValidationError as e:
            logger.warning("Dropping realtime frame: %s", e.message)
            return

        for handler in list(self._handlers.get(event.event, [])):
            try:
                await _call(handler, event.data)
            except Exception as e:
                logger.error("Handler for %s failed: %s", event.event, e)
