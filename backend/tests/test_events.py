import json
from datetime import datetime, timezone

import pytest

from timetrack.errors import ValidationError
from timetrack.models.events import DeletedEvent, EventName, TimeEntryEvent, build_event, decode_event, encode_event
from timetrack.models.time_entry import TimeEntryResponse


def _entry(**overrides):
    data = {
        "id": "e1",
        "startTime": datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
        "isRunning": True,
        "hourlyRateSnapshot": "100.00",
        "userId": "u1",
    }
    data.update(overrides)
    return TimeEntryResponse(**data)


def test_entry_event_wire_shape():
    raw = encode_event(build_event(EventName.TIME_ENTRY_STARTED, _entry()))
    message = json.loads(raw)
    assert message["event"] == "time-entry-started"
    assert message["data"]["id"] == "e1"
    assert message["data"]["isRunning"] is True


def test_decode_picks_variant_by_event_name():
    raw = encode_event(build_event(EventName.TIME_ENTRY_STOPPED, _entry(isRunning=False, durationSeconds=120)))
    event = decode_event(raw)
    assert isinstance(event, TimeEntryEvent)
    assert event.data.durationSeconds == 120

    deleted = decode_event({"event": "project-deleted", "data": {"id": "p1"}})
    assert isinstance(deleted, DeletedEvent)
    assert deleted.data.id == "p1"


def test_unknown_event_rejected():
    with pytest.raises(ValidationError):
        decode_event({"event": "time-entry-paused", "data": {"id": "e1"}})


def test_payload_must_match_event():
    with pytest.raises(ValidationError):
        decode_event({"event": "time-entry-started", "data": {"id": "e1"}})


def test_malformed_json_rejected():
    with pytest.raises(ValidationError):
        decode_event("{not json")
