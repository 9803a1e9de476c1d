from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from timetrack.utils.timeutil import as_utc


class ProjectRef(BaseModel):
    id: str
    name: str
    color: Optional[str] = None


class TaskRef(BaseModel):
    id: str
    name: str


class TimeEntryResponse(BaseModel):
    id: str
    description: Optional[str] = None
    startTime: datetime
    endTime: Optional[datetime] = None
    durationSeconds: Optional[int] = None
    isRunning: bool
    hourlyRateSnapshot: Decimal = Decimal("0")
    projectId: Optional[str] = None
    taskId: Optional[str] = None
    userId: str
    project: Optional[ProjectRef] = None
    task: Optional[TaskRef] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    class Config:
        from_attributes = True


class TimeEntryEnvelope(BaseModel):
    timeEntry: Optional[TimeEntryResponse]
    message: Optional[str] = None


class TimeEntryStartRequest(BaseModel):
    description: Optional[str] = None
    projectId: Optional[str] = None
    taskId: Optional[str] = None


class TimeEntryStopRequest(BaseModel):
    endTime: Optional[datetime] = None


class TimeEntryCreateRequest(BaseModel):
    description: Optional[str] = None
    startTime: datetime
    endTime: datetime
    projectId: Optional[str] = None
    taskId: Optional[str] = None


class TimeEntryUpdateRequest(BaseModel):
    # Only keys the caller actually sent are applied; an explicit null on
    # projectId/taskId detaches the entry.
    description: Optional[str] = None
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    hours: Optional[float] = Field(default=None, allow_inf_nan=False)
    projectId: Optional[str] = None
    taskId: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TimeEntryListResponse(BaseModel):
    entries: List[TimeEntryResponse]
    pagination: Pagination


def to_time_entry_response(entry) -> TimeEntryResponse:
    project = None
    if entry.project is not None:
        project = ProjectRef(id=entry.project.id, name=entry.project.name, color=entry.project.color)
    task = None
    if entry.task is not None:
        task = TaskRef(id=entry.task.id, name=entry.task.name)

    return TimeEntryResponse(
        id=entry.id,
        description=entry.description,
        startTime=as_utc(entry.start_time),
        endTime=as_utc(entry.end_time),
        durationSeconds=entry.duration_seconds,
        isRunning=bool(entry.is_running),
        hourlyRateSnapshot=Decimal(entry.hourly_rate_snapshot or 0),
        projectId=entry.project_id,
        taskId=entry.task_id,
        userId=entry.user_id,
        project=project,
        task=task,
        createdAt=as_utc(entry.created_at),
        updatedAt=as_utc(entry.updated_at),
    )
