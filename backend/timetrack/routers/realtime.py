"""
Realtime socket endpoint.

Clients connect to ``/ws?token=<jwt>`` (or send an ``Authorization: Bearer``
header). After the handshake the server only pushes; the one frame a client
may send is ``{"type": "ping"}``.
"""

from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from timetrack.database import SessionLocal
from timetrack.services.entry_store import EntryStore
from timetrack.utils.logger import logger

router = APIRouter(tags=["realtime"])


def _extract_token(websocket: WebSocket, token: Optional[str]) -> Optional[str]:
    if token:
        return token
    header = websocket.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _lookup_user(user_id: str):
    db = SessionLocal()
    try:
        user = EntryStore(db).get_user(user_id)
        if user is not None:
            db.expunge(user)
        return user
    finally:
        db.close()


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: Optional[str] = None):
    hub = websocket.app.state.hub
    connection = await hub.connect(websocket, _extract_token(websocket, token), _lookup_user)
    if connection is None:
        return

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                logger.debug("Ignoring non-JSON frame from %s", connection.connection_id)
                continue
            if isinstance(data, dict):
                await hub.handle_client_message(connection, data)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(connection)
