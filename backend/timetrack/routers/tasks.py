from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from timetrack.db_models import Task, User
from timetrack.dependencies import get_hub, get_store
from timetrack.errors import NotFoundError
from timetrack.models.events import EventName
from timetrack.models.task import (
    TaskCreateRequest,
    TaskEnvelope,
    TaskListResponse,
    TaskUpdateRequest,
    to_task_response,
)
from timetrack.services.auth import get_current_user
from timetrack.services.entry_store import EntryStore
from timetrack.services.realtime_hub import RealtimeHub

router = APIRouter(prefix="/api/tasks", tags=["tasks"])

_UPDATABLE = {
    "name": "name",
    "description": "description",
    "isCompleted": "is_completed",
    "hourlyRate": "hourly_rate",
}


def _owned_task(store: EntryStore, user_id: str, task_id: str) -> Task:
    task = store.find_task(user_id, task_id)
    if task is None:
        raise NotFoundError("Task not found")
    return task


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    projectId: Optional[str] = Query(None),
    isCompleted: Optional[bool] = Query(None),
    current_user: User = Depends(get_current_user),
    store: EntryStore = Depends(get_store),
):
    tasks = store.list_tasks(current_user.id, project_id=projectId, is_completed=isCompleted)
    return TaskListResponse(tasks=[to_task_response(t) for t in tasks])


@router.post("", response_model=TaskEnvelope, status_code=status.HTTP_201_CREATED)
async def create_task(
    payload: TaskCreateRequest,
    current_user: User = Depends(get_current_user),
    store: EntryStore = Depends(get_store),
    hub: RealtimeHub = Depends(get_hub),
):
    if store.find_project(current_user.id, payload.projectId) is None:
        raise NotFoundError("Project not found")

    task = Task(
        name=payload.name,
        description=payload.description,
        project_id=payload.projectId,
        hourly_rate=payload.hourlyRate,
    )
    store.add(task)
    store.commit()
    store.refresh(task)

    response = to_task_response(task)
    await hub.emit(current_user.id, EventName.TASK_CREATED, response)
    return TaskEnvelope(task=response, message="Task created successfully")


@router.get("/{task_id}", response_model=TaskEnvelope)
async def get_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    store: EntryStore = Depends(get_store),
):
    return TaskEnvelope(task=to_task_response(_owned_task(store, current_user.id, task_id)))


@router.put("/{task_id}", response_model=TaskEnvelope)
async def update_task(
    task_id: str,
    payload: TaskUpdateRequest,
    current_user: User = Depends(get_current_user),
    store: EntryStore = Depends(get_store),
    hub: RealtimeHub = Depends(get_hub),
):
    task = _owned_task(store, current_user.id, task_id)
    for field, attr in _UPDATABLE.items():
        if field in payload.model_fields_set:
            setattr(task, attr, getattr(payload, field))
    store.commit()
    store.refresh(task)

    response = to_task_response(task)
    await hub.emit(current_user.id, EventName.TASK_UPDATED, response)
    return TaskEnvelope(task=response, message="Task updated successfully")


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    store: EntryStore = Depends(get_store),
    hub: RealtimeHub = Depends(get_hub),
):
    task = _owned_task(store, current_user.id, task_id)
    store.delete_task(task)

    await hub.emit(current_user.id, EventName.TASK_DELETED, {"id": task_id})
    return {"message": "Task deleted successfully"}
