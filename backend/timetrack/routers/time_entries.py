from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from timetrack.config import settings
from timetrack.db_models import User
from timetrack.dependencies import get_timer_engine
from timetrack.models.time_entry import (
    Pagination,
    TimeEntryCreateRequest,
    TimeEntryEnvelope,
    TimeEntryListResponse,
    TimeEntryStartRequest,
    TimeEntryStopRequest,
    TimeEntryUpdateRequest,
    to_time_entry_response,
)
from timetrack.services.auth import get_current_user
from timetrack.services.timer_engine import TimerEngine
from timetrack.utils.timeutil import to_naive_utc

router = APIRouter(prefix="/api/time-entries", tags=["time-entries"])


@router.get("", response_model=TimeEntryListResponse)
async def list_time_entries(
    projectId: Optional[str] = Query(None),
    isRunning: Optional[bool] = Query(None),
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    current_user: User = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    limit = min(limit, settings.TIME_ENTRIES_MAX_PAGE_SIZE)
    rows, total = engine.list_entries(
        current_user.id,
        project_id=projectId,
        is_running=isRunning,
        start_date=to_naive_utc(startDate),
        end_date=to_naive_utc(endDate),
        page=page,
        limit=limit,
    )
    pages = (total + limit - 1) // limit if total else 0
    return TimeEntryListResponse(
        entries=[to_time_entry_response(r) for r in rows],
        pagination=Pagination(page=page, limit=limit, total=total, pages=pages),
    )


@router.post("/start", response_model=TimeEntryEnvelope)
async def start_time_entry(
    payload: TimeEntryStartRequest,
    current_user: User = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    entry = await engine.start(
        current_user.id,
        project_id=payload.projectId,
        task_id=payload.taskId,
        description=payload.description,
    )
    return TimeEntryEnvelope(timeEntry=to_time_entry_response(entry), message="Time entry started successfully")


@router.get("/current", response_model=TimeEntryEnvelope)
async def get_current_time_entry(
    current_user: User = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    # "Nothing running" is a normal answer, never a 404.
    entry = engine.get_current(current_user.id)
    return TimeEntryEnvelope(timeEntry=to_time_entry_response(entry) if entry else None)


@router.post("", response_model=TimeEntryEnvelope, status_code=status.HTTP_201_CREATED)
async def create_time_entry(
    payload: TimeEntryCreateRequest,
    current_user: User = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    entry = await engine.create(
        current_user.id,
        start_time=payload.startTime,
        end_time=payload.endTime,
        project_id=payload.projectId,
        task_id=payload.taskId,
        description=payload.description,
    )
    return TimeEntryEnvelope(timeEntry=to_time_entry_response(entry), message="Time entry created successfully")


@router.get("/{entry_id}", response_model=TimeEntryEnvelope)
async def get_time_entry(
    entry_id: str,
    current_user: User = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    entry = engine.get(current_user.id, entry_id)
    return TimeEntryEnvelope(timeEntry=to_time_entry_response(entry))


@router.post("/{entry_id}/stop", response_model=TimeEntryEnvelope)
async def stop_time_entry(
    entry_id: str,
    payload: Optional[TimeEntryStopRequest] = None,
    current_user: User = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    end_time = payload.endTime if payload else None
    entry = await engine.stop(current_user.id, entry_id, end_time=end_time)
    return TimeEntryEnvelope(timeEntry=to_time_entry_response(entry), message="Time entry stopped successfully")


@router.put("/{entry_id}", response_model=TimeEntryEnvelope)
async def update_time_entry(
    entry_id: str,
    payload: TimeEntryUpdateRequest,
    current_user: User = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    entry = await engine.edit(current_user.id, entry_id, payload.model_dump(exclude_unset=True))
    return TimeEntryEnvelope(timeEntry=to_time_entry_response(entry), message="Time entry updated successfully")


@router.delete("/{entry_id}")
async def delete_time_entry(
    entry_id: str,
    current_user: User = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    await engine.delete(current_user.id, entry_id)
    return {"message": "Time entry deleted successfully"}
