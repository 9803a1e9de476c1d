import json

import httpx
import pytest

from timetrack.client.api_client import TimeTrackApiClient
from timetrack.client.credential_store import MemoryCredentialStore
from timetrack.errors import AuthError, ConflictError, NotFoundError, TransientIOError, ValidationError


def _entry_json(entry_id="e1", running=True):
    return {
        "id": entry_id,
        "startTime": "2026-01-05T09:00:00Z",
        "endTime": None if running else "2026-01-05T09:02:00Z",
        "durationSeconds": None if running else 120,
        "isRunning": running,
        "hourlyRateSnapshot": "100.00",
        "userId": "u1",
    }


def _client(handler, token="tok"):
    return TimeTrackApiClient(
        "http://api.test",
        MemoryCredentialStore(token),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_get_current_returns_none_when_idle():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"timeEntry": None})

    async with _client(handler) as api:
        assert await api.get_current() is None
    assert seen["auth"] == "Bearer tok"


@pytest.mark.asyncio
async def test_start_parses_entry():
    def handler(request):
        assert request.url.path == "/api/time-entries/start"
        assert json.loads(request.content)["projectId"] == "p1"
        return httpx.Response(200, json={"timeEntry": _entry_json(), "message": "ok"})

    async with _client(handler) as api:
        entry = await api.start_entry(project_id="p1")
    assert entry.isRunning is True
    assert str(entry.hourlyRateSnapshot) == "100.00"


@pytest.mark.asyncio
async def test_conflict_maps_to_conflict_error_with_details():
    def handler(request):
        return httpx.Response(
            409,
            json={"detail": {"code": "CONFLICT", "message": "already running", "details": {"timeEntryId": "e9"}}},
        )

    async with _client(handler) as api:
        with pytest.raises(ConflictError) as exc:
            await api.start_entry()
    assert exc.value.details == {"timeEntryId": "e9"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, detail, expected",
    [
        (404, {"code": "NOT_FOUND", "message": "Time entry not found"}, NotFoundError),
        (400, {"code": "VALIDATION_ERROR", "message": "bad hours"}, ValidationError),
        (422, [{"loc": ["body", "hours"], "msg": "bad"}], ValidationError),
        (503, {"code": "TRANSIENT_IO", "message": "retry"}, TransientIOError),
        (502, "Bad Gateway", TransientIOError),
    ],
)
async def test_error_mapping(status, detail, expected):
    def handler(request):
        return httpx.Response(status, json={"detail": detail})

    async with _client(handler) as api:
        with pytest.raises(expected):
            await api.get_entry("e1")


@pytest.mark.asyncio
async def test_expired_token_maps_to_auth_error_reason():
    def handler(request):
        return httpx.Response(
            401,
            json={"detail": {"code": "AUTH_ERROR", "message": "Token expired", "details": {"reason": "token_expired"}}},
        )

    async with _client(handler) as api:
        with pytest.raises(AuthError) as exc:
            await api.get_current()
    assert exc.value.reason == "token_expired"


@pytest.mark.asyncio
async def test_network_failure_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as api:
        with pytest.raises(TransientIOError):
            await api.get_current()


@pytest.mark.asyncio
async def test_no_token_fails_before_any_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"timeEntry": None})

    async with _client(handler, token=None) as api:
        with pytest.raises(AuthError) as exc:
            await api.get_current()
    assert exc.value.reason == "token_missing"
    assert calls == []


@pytest.mark.asyncio
async def test_login_stores_token():
    def handler(request):
        assert "authorization" not in request.headers
        return httpx.Response(200, json={"access_token": "new-token", "token_type": "bearer"})

    credentials = MemoryCredentialStore()
    api = TimeTrackApiClient("http://api.test", credentials, transport=httpx.MockTransport(handler))
    try:
        await api.login("alice@example.com", "password123")
    finally:
        await api.close()
    assert credentials.get_token() == "new-token"


@pytest.mark.asyncio
async def test_stop_sends_end_time_only_when_given(entry_factory):
    bodies = []

    def handler(request):
        bodies.append(request.content)
        return httpx.Response(200, json={"timeEntry": _entry_json(running=False)})

    async with _client(handler) as api:
        stopped = await api.stop_entry("e1")
        await api.stop_entry("e1", end_time=entry_factory().startTime)

    assert stopped.durationSeconds == 120
    assert bodies[0] == b""
    assert json.loads(bodies[1])["endTime"].startswith("2026-01-05T09:00:00")
