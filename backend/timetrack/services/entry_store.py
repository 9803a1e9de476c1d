from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from timetrack.db_models import Project, Task, TimeEntry, User
from timetrack.errors import TransientIOError
from timetrack.utils.logger import logger


@contextmanager
def storage_errors(db: Session) -> Iterator[None]:
    """Roll back and translate driver-level failures into TransientIOError.

    IntegrityError is re-raised untouched; callers decide whether it means a
    conflict.
    """
    try:
        yield
    except IntegrityError:
        db.rollback()
        raise
    except OperationalError as exc:
        db.rollback()
        logger.error("Storage failure: %s", exc)
        raise TransientIOError("Storage temporarily unavailable, please retry") from exc


class EntryStore:
    """Persistence for users, projects, tasks and time entries.

    Every lookup is scoped by ``user_id``; a row owned by another user is
    indistinguishable from a missing one.
    """

    def __init__(self, db: Session):
        self.db = db

    # ---- users ----

    def get_user(self, user_id: str) -> Optional[User]:
        with storage_errors(self.db):
            return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        with storage_errors(self.db):
            return self.db.query(User).filter(User.email == email.lower()).first()

    def create_user(self, email: str, name: str, hashed_password: str, idle_timeout_seconds: int) -> User:
        user = User(
            email=email.lower(),
            name=name,
            hashed_password=hashed_password,
            idle_timeout_seconds=idle_timeout_seconds,
        )
        self.db.add(user)
        self.commit()
        self.db.refresh(user)
        return user

    # ---- projects ----

    def find_project(self, user_id: str, project_id: str) -> Optional[Project]:
        with storage_errors(self.db):
            return (
                self.db.query(Project)
                .filter(Project.id == project_id, Project.user_id == user_id)
                .first()
            )

    def list_projects(self, user_id: str, is_active: Optional[bool] = None) -> List[Project]:
        query = self.db.query(Project).filter(Project.user_id == user_id)
        if is_active is not None:
            query = query.filter(Project.is_active.is_(is_active))
        with storage_errors(self.db):
            return query.order_by(Project.created_at.desc(), Project.name).all()

    def delete_project(self, project: Project) -> None:
        """Delete a project and its tasks; entries keep their history detached."""
        task_ids = [t.id for t in project.tasks]
        with storage_errors(self.db):
            self.db.query(TimeEntry).filter(TimeEntry.project_id == project.id).update(
                {TimeEntry.project_id: None}, synchronize_session=False
            )
            if task_ids:
                self.db.query(TimeEntry).filter(TimeEntry.task_id.in_(task_ids)).update(
                    {TimeEntry.task_id: None}, synchronize_session=False
                )
            self.db.delete(project)
            self.db.commit()

    # ---- tasks ----

    def find_task(self, user_id: str, task_id: str) -> Optional[Task]:
        with storage_errors(self.db):
            return (
                self.db.query(Task)
                .join(Project, Task.project_id == Project.id)
                .filter(Task.id == task_id, Project.user_id == user_id)
                .first()
            )

    def list_tasks(
        self,
        user_id: str,
        project_id: Optional[str] = None,
        is_completed: Optional[bool] = None,
    ) -> List[Task]:
        query = (
            self.db.query(Task)
            .join(Project, Task.project_id == Project.id)
            .filter(Project.user_id == user_id)
        )
        if project_id:
            query = query.filter(Task.project_id == project_id)
        if is_completed is not None:
            query = query.filter(Task.is_completed.is_(is_completed))
        with storage_errors(self.db):
            return query.order_by(Task.created_at.desc(), Task.name).all()

    def delete_task(self, task: Task) -> None:
        with storage_errors(self.db):
            self.db.query(TimeEntry).filter(TimeEntry.task_id == task.id).update(
                {TimeEntry.task_id: None}, synchronize_session=False
            )
            self.db.delete(task)
            self.db.commit()

    # ---- time entries ----

    def find_entry(self, user_id: str, entry_id: str) -> Optional[TimeEntry]:
        with storage_errors(self.db):
            return (
                self.db.query(TimeEntry)
                .filter(TimeEntry.id == entry_id, TimeEntry.user_id == user_id)
                .first()
            )

    def find_running_entry(self, user_id: str) -> Optional[TimeEntry]:
        with storage_errors(self.db):
            return (
                self.db.query(TimeEntry)
                .filter(TimeEntry.user_id == user_id, TimeEntry.is_running.is_(True))
                .order_by(TimeEntry.start_time.desc())
                .first()
            )

    def count_running_entries(self, user_id: str) -> int:
        with storage_errors(self.db):
            return (
                self.db.query(TimeEntry)
                .filter(TimeEntry.user_id == user_id, TimeEntry.is_running.is_(True))
                .count()
            )

    def list_entries(
        self,
        user_id: str,
        project_id: Optional[str] = None,
        is_running: Optional[bool] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[TimeEntry], int]:
        query = self.db.query(TimeEntry).filter(TimeEntry.user_id == user_id)
        if project_id:
            query = query.filter(TimeEntry.project_id == project_id)
        if is_running is not None:
            query = query.filter(TimeEntry.is_running.is_(is_running))
        if start_date is not None:
            query = query.filter(TimeEntry.start_time >= start_date)
        if end_date is not None:
            query = query.filter(TimeEntry.start_time <= end_date)

        with storage_errors(self.db):
            total = query.count()
            rows = (
                query.order_by(TimeEntry.start_time.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
        return rows, total

    def add(self, row) -> None:
        self.db.add(row)

    def delete(self, row) -> None:
        with storage_errors(self.db):
            self.db.delete(row)
            self.db.commit()

    def commit(self) -> None:
        with storage_errors(self.db):
            self.db.commit()

    def refresh(self, row) -> None:
        with storage_errors(self.db):
            self.db.refresh(row)
