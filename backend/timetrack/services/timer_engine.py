"""Authoritative timer state machine.

Per user there are two states: idle (no running entry) and running (exactly
one). All mutations go through :class:`TimerEngine`, which validates, writes
through :class:`EntryStore` and then emits the matching realtime event.
"""

from __future__ import annotations

import asyncio
import math
import weakref
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from timetrack.db_models import Project, Task, TimeEntry
from timetrack.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from timetrack.models.events import EventName
from timetrack.models.time_entry import to_time_entry_response
from timetrack.services.entry_store import EntryStore
from timetrack.services.rate_resolver import resolve_hourly_rate
from timetrack.utils.logger import logger, sync_logger
from timetrack.utils.timeutil import to_naive_utc, utcnow, whole_seconds_between

MAX_EDIT_HOURS = 24
EDITABLE_FIELDS = {"description", "startTime", "endTime", "hours", "projectId", "taskId"}
RUNNING_EDITABLE_FIELDS = {"description"}

_UNSET = object()


class UserLocks:
    """One asyncio lock per user so start/stop/edit for a user run one at a time.

    Locks are held weakly: an entry lives only while some request holds or
    waits on it, so the table does not grow with the number of users seen.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def get(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock


class TimerEngine:
    def __init__(
        self,
        store: EntryStore,
        publisher,
        locks: Optional[UserLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.publisher = publisher
        self.locks = locks or UserLocks()
        self.clock = clock

    # ---- helpers ----

    def _now(self) -> datetime:
        return to_naive_utc(self.clock())

    def _owned_entry(self, user_id: str, entry_id: str) -> TimeEntry:
        entry = self.store.find_entry(user_id, entry_id)
        if entry is None:
            raise NotFoundError("Time entry not found")
        return entry

    def _resolve_assignment(
        self,
        user_id: str,
        project_id: Optional[str],
        task_id: Optional[str],
    ) -> Tuple[Optional[Project], Optional[Task]]:
        """Validate ownership of the project/task pair and return the rows."""
        project = None
        task = None
        if project_id:
            project = self.store.find_project(user_id, project_id)
            if project is None:
                raise NotFoundError("Project not found")
        if task_id:
            task = self.store.find_task(user_id, task_id)
            if task is None:
                raise NotFoundError("Task not found")
            if project is None:
                project = task.project
            elif task.project_id != project.id:
                raise ValidationError("Task does not belong to the selected project")
        return project, task

    def _rate_for(self, user_id: str, project: Optional[Project], task: Optional[Task]) -> Decimal:
        return resolve_hourly_rate(task=task, project=project, user=self.store.get_user(user_id))

    async def _emit(self, user_id: str, name: EventName, data: Any) -> None:
        try:
            await self.publisher.emit(user_id, name, data)
        except Exception as e:
            # The write already committed; clients reconcile through pulls.
            logger.error("Failed to publish %s for user %s: %s", name.value, user_id, e)

    # ---- reads ----

    def get_current(self, user_id: str) -> Optional[TimeEntry]:
        return self.store.find_running_entry(user_id)

    def get(self, user_id: str, entry_id: str) -> TimeEntry:
        return self._owned_entry(user_id, entry_id)

    def list_entries(self, user_id: str, **filters):
        return self.store.list_entries(user_id, **filters)

    # ---- mutations ----

    async def start(
        self,
        user_id: str,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> TimeEntry:
        async with self.locks.get(user_id):
            running = self.store.find_running_entry(user_id)
            if running is not None:
                raise ConflictError(
                    "A timer is already running. Stop it before starting a new one.",
                    details={"timeEntryId": running.id},
                )

            project, task = self._resolve_assignment(user_id, project_id, task_id)
            rate = self._rate_for(user_id, project, task)

            entry = TimeEntry(
                description=description,
                start_time=self._now(),
                end_time=None,
                duration_seconds=None,
                is_running=True,
                hourly_rate_snapshot=rate,
                project_id=project.id if project else None,
                task_id=task.id if task else None,
                user_id=user_id,
            )
            self.store.add(entry)
            try:
                self.store.commit()
            except IntegrityError:
                # Another process won the race for this user's running slot.
                raise ConflictError("A timer is already running. Stop it before starting a new one.")
            self.store.refresh(entry)

            sync_logger.log_sync_event(
                "timer-started",
                f"Entry {entry.id} started",
                user_id=user_id,
                payload={"project_id": entry.project_id, "task_id": entry.task_id, "rate": str(rate)},
            )
            await self._emit(user_id, EventName.TIME_ENTRY_STARTED, to_time_entry_response(entry))
            return entry

    async def stop(self, user_id: str, entry_id: str, end_time: Optional[datetime] = None) -> TimeEntry:
        async with self.locks.get(user_id):
            entry = self._owned_entry(user_id, entry_id)
            if not entry.is_running:
                raise ConflictError("Time entry is not running")

            stop_at = to_naive_utc(end_time) if end_time is not None else self._now()
            if stop_at < entry.start_time:
                raise ValidationError("End time must not be before start time")

            entry.end_time = stop_at
            entry.duration_seconds = whole_seconds_between(entry.start_time, stop_at)
            entry.is_running = False
            self.store.commit()
            self.store.refresh(entry)

            sync_logger.log_sync_event(
                "timer-stopped",
                f"Entry {entry.id} stopped after {entry.duration_seconds}s",
                user_id=user_id,
            )
            await self._emit(user_id, EventName.TIME_ENTRY_STOPPED, to_time_entry_response(entry))
            return entry

    async def create(
        self,
        user_id: str,
        start_time: datetime,
        end_time: datetime,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> TimeEntry:
        """Record an already-finished interval."""
        start = to_naive_utc(start_time)
        end = to_naive_utc(end_time)
        if end <= start:
            raise ValidationError("End time must be after start time")

        project, task = self._resolve_assignment(user_id, project_id, task_id)
        entry = TimeEntry(
            description=description,
            start_time=start,
            end_time=end,
            duration_seconds=whole_seconds_between(start, end),
            is_running=False,
            hourly_rate_snapshot=self._rate_for(user_id, project, task),
            project_id=project.id if project else None,
            task_id=task.id if task else None,
            user_id=user_id,
        )
        self.store.add(entry)
        self.store.commit()
        self.store.refresh(entry)

        await self._emit(user_id, EventName.TIME_ENTRY_CREATED, to_time_entry_response(entry))
        return entry

    async def edit(self, user_id: str, entry_id: str, patch: Dict[str, Any]) -> TimeEntry:
        """Apply a partial update.

        ``patch`` holds only the keys the caller supplied. Everything is
        validated before the row is touched, so a rejected edit leaves the
        entry exactly as it was.
        """
        unknown = set(patch) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        async with self.locks.get(user_id):
            entry = self._owned_entry(user_id, entry_id)

            if entry.is_running and set(patch) - RUNNING_EDITABLE_FIELDS:
                raise InvalidStateError("Cannot edit a running time entry. Please stop it first.")

            start_time = entry.start_time
            end_time = entry.end_time
            duration = entry.duration_seconds

            if patch.get("startTime") is not None:
                start_time = to_naive_utc(patch["startTime"])
            if patch.get("endTime") is not None:
                end_time = to_naive_utc(patch["endTime"])

            if patch.get("hours") is not None:
                hours = patch["hours"]
                if not math.isfinite(hours) or hours <= 0 or hours > MAX_EDIT_HOURS:
                    raise ValidationError("Hours must be greater than 0 and at most 24")
                span = timedelta(hours=hours)
                end_time = start_time + span
                duration = math.floor(span.total_seconds())
            elif "hours" in patch:
                raise ValidationError("Hours must be a number")
            elif patch.get("startTime") is not None or patch.get("endTime") is not None:
                if end_time is not None:
                    if end_time < start_time:
                        raise ValidationError("End time must not be before start time")
                    duration = whole_seconds_between(start_time, end_time)

            project_id = patch["projectId"] if "projectId" in patch else entry.project_id
            task_id = patch["taskId"] if "taskId" in patch else entry.task_id
            rate = _UNSET
            if "projectId" in patch or "taskId" in patch:
                project, task = self._resolve_assignment(user_id, project_id, task_id)
                project_id = project.id if project else None
                task_id = task.id if task else None
                rate = self._rate_for(user_id, project, task)

            if "description" in patch:
                entry.description = patch["description"]
            entry.start_time = start_time
            entry.end_time = end_time
            entry.duration_seconds = duration
            entry.project_id = project_id
            entry.task_id = task_id
            if rate is not _UNSET:
                entry.hourly_rate_snapshot = rate
            self.store.commit()
            self.store.refresh(entry)

            await self._emit(user_id, EventName.TIME_ENTRY_UPDATED, to_time_entry_response(entry))
            return entry

    async def delete(self, user_id: str, entry_id: str) -> None:
        async with self.locks.get(user_id):
            entry = self._owned_entry(user_id, entry_id)
            self.store.delete(entry)

            sync_logger.log_sync_event("timer-deleted", f"Entry {entry_id} deleted", user_id=user_id)
            await self._emit(user_id, EventName.TIME_ENTRY_DELETED, {"id": entry_id})
