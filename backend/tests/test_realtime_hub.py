import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from timetrack.config import settings
from timetrack.models.events import EventName
from timetrack.services.auth import create_access_token
from timetrack.services.realtime_hub import CLOSE_AUTH_FAILED, CLOSE_SERVER_MISCONFIGURED, RealtimeHub


def _lookup(*users):
    by_id = {u.id: u for u in users}
    return lambda user_id: by_id.get(user_id)


def _user(user_id):
    return SimpleNamespace(id=user_id, is_active=True)


def _token(user_id):
    return create_access_token({"sub": user_id})


@pytest.mark.asyncio
async def test_connect_joins_user_room():
    hub = RealtimeHub()
    ws = AsyncMock()
    alice = _user("alice")

    conn = await hub.connect(ws, _token("alice"), _lookup(alice))

    assert conn is not None
    assert conn.user_id == "alice"
    assert hub.room_size("alice") == 1
    ws.accept.assert_awaited_once()
    ws.close.assert_not_awaited()


@pytest.mark.asyncio
async def test_invalid_token_closes_with_4401():
    hub = RealtimeHub()
    ws = AsyncMock()

    conn = await hub.connect(ws, "not-a-token", _lookup())

    assert conn is None
    ws.close.assert_awaited_once_with(code=CLOSE_AUTH_FAILED, reason="token_invalid")
    assert hub.get_stats()["connections"] == 0


@pytest.mark.asyncio
async def test_unknown_user_closes_with_4401():
    hub = RealtimeHub()
    ws = AsyncMock()

    conn = await hub.connect(ws, _token("ghost"), _lookup())

    assert conn is None
    ws.close.assert_awaited_once_with(code=CLOSE_AUTH_FAILED, reason="user_not_found")


@pytest.mark.asyncio
async def test_missing_secret_closes_with_1011(monkeypatch):
    hub = RealtimeHub()
    ws = AsyncMock()
    token = _token("alice")
    monkeypatch.setattr(settings, "JWT_SECRET", None)
    monkeypatch.setattr(settings, "SECRET_KEY", "")

    conn = await hub.connect(ws, token, _lookup(_user("alice")))

    assert conn is None
    ws.close.assert_awaited_once_with(code=CLOSE_SERVER_MISCONFIGURED, reason="server_misconfigured")


@pytest.mark.asyncio
async def test_emit_reaches_every_socket_of_the_user_only():
    hub = RealtimeHub()
    lookup = _lookup(_user("alice"), _user("bob"))
    phone, laptop, other = AsyncMock(), AsyncMock(), AsyncMock()
    await hub.connect(phone, _token("alice"), lookup)
    await hub.connect(laptop, _token("alice"), lookup)
    await hub.connect(other, _token("bob"), lookup)

    delivered = await hub.emit("alice", EventName.TIME_ENTRY_DELETED, {"id": "e1"})

    assert delivered == 2
    sent = json.loads(phone.send_text.await_args.args[0])
    assert sent == {"event": "time-entry-deleted", "data": {"id": "e1"}}
    laptop.send_text.assert_awaited_once()
    other.send_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_socket_is_pruned():
    hub = RealtimeHub()
    lookup = _lookup(_user("alice"))
    healthy, broken = AsyncMock(), AsyncMock()
    broken.send_text.side_effect = RuntimeError("connection reset")
    await hub.connect(healthy, _token("alice"), lookup)
    await hub.connect(broken, _token("alice"), lookup)

    delivered = await hub.emit("alice", EventName.TASK_DELETED, {"id": "t1"})

    assert delivered == 1
    assert hub.room_size("alice") == 1


@pytest.mark.asyncio
async def test_emit_to_empty_room_is_a_noop():
    hub = RealtimeHub()
    assert await hub.emit("nobody", EventName.PROJECT_DELETED, {"id": "p1"}) == 0


@pytest.mark.asyncio
async def test_disconnect_removes_room():
    hub = RealtimeHub()
    conn = await hub.connect(AsyncMock(), _token("alice"), _lookup(_user("alice")))
    hub.disconnect(conn)
    hub.disconnect(conn)
    assert hub.room_size("alice") == 0
    assert hub.get_stats()["rooms"] == 0


@pytest.mark.asyncio
async def test_ping_gets_pong():
    hub = RealtimeHub()
    ws = AsyncMock()
    conn = await hub.connect(ws, _token("alice"), _lookup(_user("alice")))

    await hub.handle_client_message(conn, {"type": "ping"})
    await hub.handle_client_message(conn, {"type": "something-else"})

    ws.send_json.assert_awaited_once()
    assert ws.send_json.await_args.args[0]["type"] == "pong"


@pytest.mark.asyncio
async def test_close_all_closes_sockets():
    hub = RealtimeHub()
    ws = AsyncMock()
    await hub.connect(ws, _token("alice"), _lookup(_user("alice")))

    await hub.close_all()

    ws.close.assert_awaited_once_with(code=1001, reason="server_shutdown")
    assert hub.get_stats()["connections"] == 0
