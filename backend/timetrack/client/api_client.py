from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from timetrack.client.credential_store import CredentialStore
from timetrack.errors import AuthError, TransientIOError, error_from_response
from timetrack.models.project import ProjectResponse
from timetrack.models.task import TaskResponse
from timetrack.models.time_entry import TimeEntryListResponse, TimeEntryResponse
from timetrack.models.user import UserResponse
from timetrack.utils.logger import logger


class TimeTrackApiClient:
    """Thin async wrapper over the REST API.

    Failed responses are raised as the same :mod:`timetrack.errors` classes
    the server raised; network failures become :class:`TransientIOError`.
    """

    def __init__(
        self,
        base_url: str,
        credentials: CredentialStore,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        headers = {"Accept": "application/json"}
        if authenticated:
            token = self.credentials.get_token()
            if not token:
                raise AuthError("Not signed in", reason=AuthError.TOKEN_MISSING)
            headers["Authorization"] = f"Bearer {token}"

        try:
            resp = await self._client.request(method, path, json=json, params=params, headers=headers)
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, path, type(e).__name__)
            raise TransientIOError(f"Network error: {type(e).__name__}") from e

        if resp.status_code >= 400:
            try:
                body = resp.json()
                detail = body.get("detail") if isinstance(body, dict) else body
            except ValueError:
                detail = resp.text or None
            raise error_from_response(resp.status_code, detail)

        if not resp.content:
            return None
        return resp.json()

    # ---- auth ----

    async def login(self, email: str, password: str) -> str:
        data = await self._request(
            "POST", "/api/auth/login", json={"email": email, "password": password}, authenticated=False
        )
        token = data["access_token"]
        self.credentials.set_token(token)
        return token

    def logout(self) -> None:
        self.credentials.clear()

    async def me(self) -> UserResponse:
        return UserResponse.model_validate(await self._request("GET", "/api/users/me"))

    async def update_settings(self, **fields) -> UserResponse:
        return UserResponse.model_validate(await self._request("PUT", "/api/users/me", json=fields))

    # ---- time entries ----

    async def get_current(self) -> Optional[TimeEntryResponse]:
        data = await self._request("GET", "/api/time-entries/current")
        entry = data.get("timeEntry")
        return TimeEntryResponse.model_validate(entry) if entry else None

    async def get_entry(self, entry_id: str) -> TimeEntryResponse:
        data = await self._request("GET", f"/api/time-entries/{entry_id}")
        return TimeEntryResponse.model_validate(data["timeEntry"])

    async def start_entry(
        self,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> TimeEntryResponse:
        body = {"projectId": project_id, "taskId": task_id, "description": description}
        data = await self._request("POST", "/api/time-entries/start", json=body)
        return TimeEntryResponse.model_validate(data["timeEntry"])

    async def stop_entry(self, entry_id: str, end_time: Optional[datetime] = None) -> TimeEntryResponse:
        body = {"endTime": end_time.isoformat()} if end_time else None
        data = await self._request("POST", f"/api/time-entries/{entry_id}/stop", json=body)
        return TimeEntryResponse.model_validate(data["timeEntry"])

    async def list_entries(self, page: int = 1, limit: int = 20, **filters) -> TimeEntryListResponse:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        params.update({k: v for k, v in filters.items() if v is not None})
        return TimeEntryListResponse.model_validate(await self._request("GET", "/api/time-entries", params=params))

    async def create_entry(self, start_time: datetime, end_time: datetime, **fields) -> TimeEntryResponse:
        body = {"startTime": start_time.isoformat(), "endTime": end_time.isoformat(), **fields}
        data = await self._request("POST", "/api/time-entries", json=body)
        return TimeEntryResponse.model_validate(data["timeEntry"])

    async def update_entry(self, entry_id: str, **patch) -> TimeEntryResponse:
        body = {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in patch.items()}
        data = await self._request("PUT", f"/api/time-entries/{entry_id}", json=body)
        return TimeEntryResponse.model_validate(data["timeEntry"])

    async def delete_entry(self, entry_id: str) -> None:
        await self._request("DELETE", f"/api/time-entries/{entry_id}")

    # ---- projects / tasks ----

    async def list_projects(self, is_active: Optional[bool] = None) -> List[ProjectResponse]:
        params = {"isActive": is_active} if is_active is not None else None
        data = await self._request("GET", "/api/projects", params=params)
        return [ProjectResponse.model_validate(p) for p in data["projects"]]

    async def list_tasks(self, project_id: Optional[str] = None) -> List[TaskResponse]:
        params = {"projectId": project_id} if project_id else None
        data = await self._request("GET", "/api/tasks", params=params)
        return [TaskResponse.model_validate(t) for t in data["tasks"]]
