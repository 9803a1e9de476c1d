from datetime import datetime, timedelta, timezone

import pytest

from timetrack.client.config import ClientSettings
from timetrack.models.time_entry import TimeEntryResponse

T0 = datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def set(self, hh, mm, ss):
        self.now = self.now.replace(hour=hh, minute=mm, second=ss)

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def client_clock():
    return Clock()


@pytest.fixture
def quiet_settings():
    # Background loops effectively never fire; tests drive the agent directly.
    return ClientSettings(
        TICK_SECONDS=3600,
        RESYNC_SECONDS=3600,
        IDLE_CHECK_SECONDS=3600,
        POLL_MIN_SECONDS=3600,
        POLL_MAX_SECONDS=7200,
        IDLE_TIMEOUT_SECONDS=600,
    )


@pytest.fixture
def entry_factory():
    def _make(entry_id="e1", running=True, start=T0, duration=None, rate="100.00", **extra):
        end = start + timedelta(seconds=duration) if duration is not None else None
        return TimeEntryResponse(
            id=entry_id,
            startTime=start,
            endTime=end,
            durationSeconds=duration,
            isRunning=running,
            hourlyRateSnapshot=rate,
            userId="u1",
            **extra,
        )

    return _make
