"""
Realtime Hub - per-user WebSocket fan-out

Every authenticated socket joins the room of the user it belongs to. Domain
events are pushed to every socket in that room, the originating device
included, so all of a user's clients converge the same way.

Delivery is fire-and-forget and at most once: nothing is queued for sockets
that are offline. Clients recover missed events by pulling on reconnect.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from fastapi import WebSocket

from timetrack.errors import AuthError
from timetrack.models.events import EventName, build_event, encode_event
from timetrack.services.auth import authenticate_token
from timetrack.utils.logger import logger, sync_logger

# Close codes sent to clients whose handshake is rejected.
CLOSE_AUTH_FAILED = 4401
CLOSE_SERVER_MISCONFIGURED = 1011


@dataclass
class HubConnection:
    """One live socket bound to one user."""
    websocket: WebSocket
    user_id: str
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    connected_at: float = 0.0
    events_sent: int = 0

    def __post_init__(self):
        if self.connected_at == 0.0:
            self.connected_at = time.time()


class RealtimeHub:
    """
    Connection registry and broadcaster.

    Owns an explicit ``user_id -> {connection_id: HubConnection}`` map whose
    lifetime is tied to the connect/disconnect callbacks of the socket route.
    """

    def __init__(self):
        self._rooms: Dict[str, Dict[str, HubConnection]] = {}
        self._events_published: int = 0

    async def connect(
        self,
        websocket: WebSocket,
        token: Optional[str],
        user_lookup: Callable[[str], Any],
    ) -> Optional[HubConnection]:
        """Accept, authenticate and register a socket.

        Returns ``None`` after closing the socket with a reason when the
        credential is missing, invalid or expired, or when the server cannot
        verify tokens at all.
        """
        await websocket.accept()

        try:
            user = authenticate_token(token, user_lookup)
        except AuthError as exc:
            code = CLOSE_SERVER_MISCONFIGURED if exc.reason == AuthError.SERVER_MISCONFIGURED else CLOSE_AUTH_FAILED
            logger.warning("Realtime handshake rejected: %s", exc.reason)
            await websocket.close(code=code, reason=exc.reason)
            return None

        connection = HubConnection(websocket=websocket, user_id=user.id)
        self._rooms.setdefault(user.id, {})[connection.connection_id] = connection

        sync_logger.log_sync_event(
            "socket-connected",
            f"Connection {connection.connection_id} joined room user-{user.id}",
            user_id=user.id,
            payload={"room_size": self.room_size(user.id)},
        )
        return connection

    def disconnect(self, connection: HubConnection) -> None:
        room = self._rooms.get(connection.user_id)
        if not room:
            return
        if room.pop(connection.connection_id, None) is not None:
            sync_logger.log_sync_event(
                "socket-disconnected",
                f"Connection {connection.connection_id} left room user-{connection.user_id}",
                user_id=connection.user_id,
                payload={
                    "events_sent": connection.events_sent,
                    "duration": round(time.time() - connection.connected_at, 1),
                },
            )
        if not room:
            del self._rooms[connection.user_id]

    def room_size(self, user_id: str) -> int:
        return len(self._rooms.get(user_id, {}))

    def connections_for(self, user_id: str) -> List[HubConnection]:
        return list(self._rooms.get(user_id, {}).values())

    async def publish(self, user_id: str, event) -> int:
        """Send an event to every socket of ``user_id``.

        Returns the number of sockets that accepted the message. Sockets that
        fail are dropped from the room; no retry is attempted.
        """
        message = encode_event(event)
        delivered = 0
        dead: List[HubConnection] = []

        for connection in self.connections_for(user_id):
            try:
                await connection.websocket.send_text(message)
                connection.events_sent += 1
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Dropping connection %s after send failure: %s",
                    connection.connection_id,
                    e,
                )
                dead.append(connection)

        for connection in dead:
            self.disconnect(connection)

        self._events_published += 1
        logger.debug("Published %s to user-%s (%d sockets)", event.event, user_id, delivered)
        return delivered

    async def emit(self, user_id: str, name: EventName, data: Any) -> int:
        return await self.publish(user_id, build_event(name, data))

    async def handle_client_message(self, connection: HubConnection, message: Dict[str, Any]) -> None:
        """Handle the few control frames clients may send."""
        if message.get("type") == "ping":
            await connection.websocket.send_json({"type": "pong", "timestamp": time.time()})

    async def close_all(self) -> None:
        for user_id in list(self._rooms):
            for connection in self.connections_for(user_id):
                try:
                    await connection.websocket.close(code=1001, reason="server_shutdown")
                except Exception as e:
                    logger.debug("Close failed for %s: %s", connection.connection_id, e)
                self.disconnect(connection)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "rooms": len(self._rooms),
            "connections": sum(len(room) for room in self._rooms.values()),
            "events_published": self._events_published,
        }
