"""Realtime event envelopes.

Every message on the socket is ``{"event": <name>, "data": <payload>}``.
Each event name has exactly one payload schema; deletes carry ``{"id"}``.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from timetrack.errors import ValidationError
from timetrack.models.project import ProjectResponse
from timetrack.models.task import TaskResponse
from timetrack.models.time_entry import TimeEntryResponse


class EventName(str, Enum):
    TIME_ENTRY_STARTED = "time-entry-started"
    TIME_ENTRY_STOPPED = "time-entry-stopped"
    TIME_ENTRY_CREATED = "time-entry-created"
    TIME_ENTRY_UPDATED = "time-entry-updated"
    TIME_ENTRY_DELETED = "time-entry-deleted"
    PROJECT_CREATED = "project-created"
    PROJECT_UPDATED = "project-updated"
    PROJECT_DELETED = "project-deleted"
    TASK_CREATED = "task-created"
    TASK_UPDATED = "task-updated"
    TASK_DELETED = "task-deleted"


class DeletedRef(BaseModel):
    id: str


class TimeEntryEvent(BaseModel):
    event: Literal[
        "time-entry-started",
        "time-entry-stopped",
        "time-entry-created",
        "time-entry-updated",
    ]
    data: TimeEntryResponse


class ProjectEvent(BaseModel):
    event: Literal["project-created", "project-updated"]
    data: ProjectResponse


class TaskEvent(BaseModel):
    event: Literal["task-created", "task-updated"]
    data: TaskResponse


class DeletedEvent(BaseModel):
    event: Literal["time-entry-deleted", "project-deleted", "task-deleted"]
    data: DeletedRef


RealtimeEvent = Annotated[
    Union[TimeEntryEvent, ProjectEvent, TaskEvent, DeletedEvent],
    Field(discriminator="event"),
]

_event_adapter = TypeAdapter(RealtimeEvent)


def build_event(name: EventName, data: Any):
    """Wrap a payload in the envelope matching ``name``."""
    return _event_adapter.validate_python({"event": name.value, "data": data})


def encode_event(event) -> str:
    return event.model_dump_json()


def decode_event(raw: Union[str, bytes, dict]):
    """Parse a wire message into its typed variant.

    Raises :class:`timetrack.errors.ValidationError` for unknown event names or
    payloads that do not match the event's schema.
    """
    try:
        if isinstance(raw, (str, bytes)):
            return _event_adapter.validate_json(raw)
        return _event_adapter.validate_python(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed realtime event: {exc.error_count()} error(s)") from exc
