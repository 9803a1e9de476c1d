from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from timetrack.utils.timeutil import as_utc


class TaskResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    projectId: str
    hourlyRate: Optional[Decimal] = None
    isCompleted: bool
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class TaskCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    projectId: str
    hourlyRate: Optional[Decimal] = Field(default=None, gt=0)


class TaskUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    isCompleted: Optional[bool] = None
    hourlyRate: Optional[Decimal] = Field(default=None, gt=0)


class TaskEnvelope(BaseModel):
    task: TaskResponse
    message: Optional[str] = None


class TaskListResponse(BaseModel):
    tasks: List[TaskResponse]


def to_task_response(task) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        name=task.name,
        description=task.description,
        projectId=task.project_id,
        hourlyRate=task.hourly_rate,
        isCompleted=bool(task.is_completed),
        createdAt=as_utc(task.created_at),
        updatedAt=as_utc(task.updated_at),
    )
