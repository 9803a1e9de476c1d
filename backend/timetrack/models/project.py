from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from timetrack.utils.timeutil import as_utc

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class ProjectResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    color: str
    hourlyRate: Optional[Decimal] = None
    isActive: bool
    userId: str
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class ProjectCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    hourlyRate: Optional[Decimal] = Field(default=None, gt=0)


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    hourlyRate: Optional[Decimal] = Field(default=None, gt=0)
    isActive: Optional[bool] = None


class ProjectEnvelope(BaseModel):
    project: ProjectResponse
    message: Optional[str] = None


class ProjectListResponse(BaseModel):
    projects: List[ProjectResponse]


def to_project_response(project) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        name=project.name,
        description=project.description,
        color=project.color,
        hourlyRate=project.hourly_rate,
        isActive=bool(project.is_active),
        userId=project.user_id,
        createdAt=as_utc(project.created_at),
        updatedAt=as_utc(project.updated_at),
    )
