from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from timetrack.db_models import Project, User
from timetrack.dependencies import get_hub, get_store
from timetrack.errors import NotFoundError
from timetrack.models.events import EventName
from timetrack.models.project import (
    ProjectCreateRequest,
    ProjectEnvelope,
    ProjectListResponse,
    ProjectUpdateRequest,
    to_project_response,
)
from timetrack.services.auth import get_current_user
from timetrack.services.entry_store import EntryStore
from timetrack.services.realtime_hub import RealtimeHub
from timetrack.utils.logger import logger

router = APIRouter(prefix="/api/projects", tags=["projects"])

# Request field -> ORM attribute
_UPDATABLE = {
    "name": "name",
    "description": "description",
    "color": "color",
    "hourlyRate": "hourly_rate",
    "isActive": "is_active",
}


def _owned_project(store: EntryStore, user_id: str, project_id: str) -> Project:
    project = store.find_project(user_id, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    return project


@router.get("", response_model=ProjectListResponse)
async def list_projects(
    isActive: Optional[bool] = Query(None),
    current_user: User = Depends(get_current_user),
    store: EntryStore = Depends(get_store),
):
    projects = store.list_projects(current_user.id, is_active=isActive)
    return ProjectListResponse(projects=[to_project_response(p) for p in projects])


@router.post("", response_model=ProjectEnvelope, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreateRequest,
    current_user: User = Depends(get_current_user),
    store: EntryStore = Depends(get_store),
    hub: RealtimeHub = Depends(get_hub),
):
    project = Project(
        name=payload.name,
        description=payload.description,
        color=payload.color or "#3B82F6",
        hourly_rate=payload.hourlyRate,
        user_id=current_user.id,
    )
    store.add(project)
    store.commit()
    store.refresh(project)

    response = to_project_response(project)
    await hub.emit(current_user.id, EventName.PROJECT_CREATED, response)
    return ProjectEnvelope(project=response, message="Project created successfully")


@router.get("/{project_id}", response_model=ProjectEnvelope)
async def get_project(
    project_id: str,
    current_user: User = Depends(get_current_user),
    store: EntryStore = Depends(get_store),
):
    return ProjectEnvelope(project=to_project_response(_owned_project(store, current_user.id, project_id)))


@router.put("/{project_id}", response_model=ProjectEnvelope)
async def update_project(
    project_id: str,
    payload: ProjectUpdateRequest,
    current_user: User = Depends(get_current_user),
    store: EntryStore = Depends(get_store),
    hub: RealtimeHub = Depends(get_hub),
):
    project = _owned_project(store, current_user.id, project_id)
    # A rate change here never touches existing entries; their snapshot is frozen.
    for field, attr in _UPDATABLE.items():
        if field in payload.model_fields_set:
            setattr(project, attr, getattr(payload, field))
    store.commit()
    store.refresh(project)

    response = to_project_response(project)
    await hub.emit(current_user.id, EventName.PROJECT_UPDATED, response)
    return ProjectEnvelope(project=response, message="Project updated successfully")


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    current_user: User = Depends(get_current_user),
    store: EntryStore = Depends(get_store),
    hub: RealtimeHub = Depends(get_hub),
):
    project = _owned_project(store, current_user.id, project_id)
    store.delete_project(project)
    logger.info("Project %s deleted by user %s; entries detached", project_id, current_user.id)

    await hub.emit(current_user.id, EventName.PROJECT_DELETED, {"id": project_id})
    return {"message": "Project deleted successfully"}
