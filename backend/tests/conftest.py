import os

# Must be set before timetrack.config is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET", "test-secret-key")

from datetime import datetime, timedelta

import pytest

import timetrack.db_models  # noqa: F401  registers the mappers
from timetrack.database import Base, SessionLocal, engine
from timetrack.db_models import Project, Task
from timetrack.services.auth import get_password_hash
from timetrack.services.entry_store import EntryStore
from timetrack.services.timer_engine import TimerEngine, UserLocks


class FakeClock:
    def __init__(self, start=datetime(2026, 1, 5, 9, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def emit(self, user_id, name, data):
        self.events.append((user_id, name, data))
        return 1

    def names(self):
        return [name.value for _, name, _ in self.events]


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db):
    return EntryStore(db)


@pytest.fixture
def make_user(store):
    def _make(email="alice@example.com", default_rate=None):
        user = store.create_user(email, email.split("@")[0], get_password_hash("password123"), 600)
        if default_rate is not None:
            user.default_hourly_rate = default_rate
            store.commit()
        return user

    return _make


@pytest.fixture
def make_project(store):
    def _make(user, name="Client work", rate=None):
        project = Project(name=name, hourly_rate=rate, user_id=user.id)
        store.add(project)
        store.commit()
        store.refresh(project)
        return project

    return _make


@pytest.fixture
def make_task(store):
    def _make(project, name="Design", rate=None):
        task = Task(name=name, hourly_rate=rate, project_id=project.id)
        store.add(task)
        store.commit()
        store.refresh(task)
        return task

    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def locks():
    return UserLocks()


@pytest.fixture
def timer_engine(store, publisher, locks, clock):
    return TimerEngine(store, publisher, locks=locks, clock=clock)
