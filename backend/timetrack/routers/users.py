from typing import Optional

from fastapi import APIRouter, Depends, Query

from timetrack.db_models import User
from timetrack.dependencies import get_store
from timetrack.models.user import UserResponse, UserSettingsUpdate, to_user_response
from timetrack.services.auth import get_current_user
from timetrack.services.entry_store import EntryStore
from timetrack.utils.logger import logger, sync_logger

router = APIRouter(prefix="/api/users", tags=["users"])

_UPDATABLE = {
    "name": "name",
    "defaultHourlyRate": "default_hourly_rate",
    "idleTimeoutSeconds": "idle_timeout_seconds",
}


@router.get("/me", response_model=UserResponse)
async def get_profile(current_user: User = Depends(get_current_user)):
    return to_user_response(current_user)


@router.put("/me", response_model=UserResponse)
async def update_profile(
    payload: UserSettingsUpdate,
    current_user: User = Depends(get_current_user),
    store: EntryStore = Depends(get_store),
):
    # The default rate applies to entries started after this call only.
    changed = []
    for field, attr in _UPDATABLE.items():
        if field in payload.model_fields_set:
            setattr(current_user, attr, getattr(payload, field))
            changed.append(field)
    store.commit()
    store.refresh(current_user)
    logger.info("User %s updated settings: %s", current_user.id, ", ".join(changed) or "nothing")
    return to_user_response(current_user)


@router.get("/me/sync-log")
async def get_sync_log(
    limit: Optional[int] = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_user),
):
    """Recent timer and socket events recorded for the caller in this process."""
    logs = [log for log in sync_logger.get_logs() if log.get("user_id") == current_user.id]
    return {"logs": logs[-limit:], "total": len(logs)}
