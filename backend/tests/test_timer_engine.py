import asyncio
import gc
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from timetrack.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from timetrack.services.timer_engine import TimerEngine, UserLocks


@pytest.mark.asyncio
async def test_start_then_stop_records_whole_seconds(timer_engine, make_user, publisher, clock):
    user = make_user()
    entry = await timer_engine.start(user.id, description="standup")
    assert entry.is_running is True
    assert entry.end_time is None
    assert entry.duration_seconds is None

    clock.advance(120.9)
    stopped = await timer_engine.stop(user.id, entry.id)

    assert stopped.is_running is False
    assert stopped.duration_seconds == 120
    assert stopped.end_time == clock.now
    assert publisher.names() == ["time-entry-started", "time-entry-stopped"]


@pytest.mark.asyncio
async def test_second_start_conflicts_and_names_running_entry(timer_engine, make_user, store):
    user = make_user()
    first = await timer_engine.start(user.id)

    with pytest.raises(ConflictError) as exc:
        await timer_engine.start(user.id)

    assert exc.value.details == {"timeEntryId": first.id}
    assert store.count_running_entries(user.id) == 1


@pytest.mark.asyncio
async def test_double_stop_is_rejected(timer_engine, make_user, clock):
    user = make_user()
    entry = await timer_engine.start(user.id)
    clock.advance(10)
    await timer_engine.stop(user.id, entry.id)

    with pytest.raises(ConflictError):
        await timer_engine.stop(user.id, entry.id)


@pytest.mark.asyncio
async def test_at_most_one_running_entry_across_sequence(timer_engine, make_user, store, clock):
    user = make_user()
    ops = ["start", "start", "stop", "stop", "start", "stop", "start", "start"]
    for op in ops:
        clock.advance(3)
        running = store.find_running_entry(user.id)
        try:
            if op == "start":
                await timer_engine.start(user.id)
            elif running is not None:
                await timer_engine.stop(user.id, running.id)
        except ConflictError:
            pass
        assert store.count_running_entries(user.id) <= 1


@pytest.mark.asyncio
async def test_concurrent_starts_produce_one_entry(store, publisher, locks, clock, make_user):
    user = make_user()
    a = TimerEngine(store, publisher, locks=locks, clock=clock)
    b = TimerEngine(store, publisher, locks=locks, clock=clock)

    results = await asyncio.gather(a.start(user.id), b.start(user.id), return_exceptions=True)

    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(conflicts) == 1
    assert store.count_running_entries(user.id) == 1


@pytest.mark.asyncio
async def test_stop_with_explicit_end_time(timer_engine, make_user, clock):
    user = make_user()
    entry = await timer_engine.start(user.id)
    end = (clock.now + timedelta(minutes=5)).replace(tzinfo=timezone.utc)

    stopped = await timer_engine.stop(user.id, entry.id, end_time=end)
    assert stopped.duration_seconds == 300


@pytest.mark.asyncio
async def test_stop_before_start_is_rejected(timer_engine, make_user, clock):
    user = make_user()
    entry = await timer_engine.start(user.id)
    with pytest.raises(ValidationError):
        await timer_engine.stop(user.id, entry.id, end_time=clock.now - timedelta(seconds=1))


@pytest.mark.asyncio
async def test_rate_is_frozen_at_start(timer_engine, make_user, make_project, make_task, store, clock):
    user = make_user()
    project = make_project(user, rate=Decimal("40"))

    first = await timer_engine.start(user.id, project_id=project.id)
    assert first.hourly_rate_snapshot == Decimal("40")

    project.hourly_rate = Decimal("60")
    store.commit()
    clock.advance(60)
    await timer_engine.stop(user.id, first.id)
    store.refresh(first)
    assert first.hourly_rate_snapshot == Decimal("40")

    second = await timer_engine.start(user.id, project_id=project.id)
    assert second.hourly_rate_snapshot == Decimal("60")

    clock.advance(60)
    await timer_engine.stop(user.id, second.id)
    task = make_task(project, rate=Decimal("90"))
    third = await timer_engine.start(user.id, task_id=task.id)
    task.hourly_rate = Decimal("120")
    store.commit()
    store.refresh(third)
    assert third.hourly_rate_snapshot == Decimal("90")


@pytest.mark.asyncio
async def test_rate_falls_back_to_user_default(timer_engine, make_user):
    user = make_user(default_rate=Decimal("25"))
    entry = await timer_engine.start(user.id)
    assert entry.hourly_rate_snapshot == Decimal("25")


@pytest.mark.asyncio
async def test_task_alone_adopts_its_project(timer_engine, make_user, make_project, make_task):
    user = make_user()
    project = make_project(user)
    task = make_task(project)

    entry = await timer_engine.start(user.id, task_id=task.id)
    assert entry.project_id == project.id
    assert entry.task_id == task.id


@pytest.mark.asyncio
async def test_task_from_other_project_is_rejected(timer_engine, make_user, make_project, make_task):
    user = make_user()
    p1 = make_project(user, name="One")
    p2 = make_project(user, name="Two")
    task = make_task(p2)

    with pytest.raises(ValidationError):
        await timer_engine.start(user.id, project_id=p1.id, task_id=task.id)


@pytest.mark.asyncio
async def test_foreign_project_is_not_found(timer_engine, make_user, make_project):
    alice = make_user()
    bob = make_user("bob@example.com")
    project = make_project(bob)

    with pytest.raises(NotFoundError):
        await timer_engine.start(alice.id, project_id=project.id)


@pytest.mark.asyncio
async def test_other_users_entry_is_not_found(timer_engine, make_user):
    alice = make_user()
    bob = make_user("bob@example.com")
    entry = await timer_engine.start(bob.id)

    with pytest.raises(NotFoundError):
        timer_engine.get(alice.id, entry.id)
    with pytest.raises(NotFoundError):
        await timer_engine.stop(alice.id, entry.id)
    with pytest.raises(NotFoundError):
        await timer_engine.edit(alice.id, entry.id, {"description": "mine now"})
    with pytest.raises(NotFoundError):
        await timer_engine.delete(alice.id, entry.id)


async def _stopped_entry(engine, user, clock, seconds=600):
    entry = await engine.start(user.id)
    clock.advance(seconds)
    return await engine.stop(user.id, entry.id)


@pytest.mark.asyncio
async def test_hours_take_precedence_over_end_time(timer_engine, make_user, clock):
    user = make_user()
    entry = await _stopped_entry(timer_engine, user, clock)
    start = entry.start_time

    edited = await timer_engine.edit(
        user.id,
        entry.id,
        {"hours": 2, "endTime": start + timedelta(hours=5)},
    )
    assert edited.end_time == start + timedelta(hours=2)
    assert edited.duration_seconds == 7200


@pytest.mark.asyncio
@pytest.mark.parametrize("hours", [0, -1, 25, 24.01, float("nan"), float("inf")])
async def test_hours_out_of_range_rejected(timer_engine, make_user, clock, hours):
    user = make_user()
    entry = await _stopped_entry(timer_engine, user, clock)
    with pytest.raises(ValidationError):
        await timer_engine.edit(user.id, entry.id, {"hours": hours})


@pytest.mark.asyncio
async def test_twenty_four_hours_accepted(timer_engine, make_user, clock):
    user = make_user()
    entry = await _stopped_entry(timer_engine, user, clock)
    edited = await timer_engine.edit(user.id, entry.id, {"hours": 24})
    assert edited.duration_seconds == 86400


@pytest.mark.asyncio
async def test_fractional_hours_floor_to_seconds(timer_engine, make_user, clock):
    user = make_user()
    entry = await _stopped_entry(timer_engine, user, clock)
    edited = await timer_engine.edit(user.id, entry.id, {"hours": 1.5})
    assert edited.duration_seconds == 5400


@pytest.mark.asyncio
async def test_running_entry_allows_description_only(timer_engine, make_user, clock):
    user = make_user()
    entry = await timer_engine.start(user.id)

    edited = await timer_engine.edit(user.id, entry.id, {"description": "renamed"})
    assert edited.description == "renamed"
    assert edited.is_running is True

    for patch in ({"hours": 1}, {"startTime": clock.now - timedelta(hours=1)}, {"projectId": None}):
        with pytest.raises(InvalidStateError):
            await timer_engine.edit(user.id, entry.id, patch)


@pytest.mark.asyncio
async def test_rejected_edit_changes_nothing(timer_engine, make_user, clock, store):
    user = make_user()
    entry = await _stopped_entry(timer_engine, user, clock)
    before = (entry.description, entry.end_time, entry.duration_seconds)

    with pytest.raises(ValidationError):
        await timer_engine.edit(user.id, entry.id, {"description": "changed", "hours": 30})

    store.refresh(entry)
    assert (entry.description, entry.end_time, entry.duration_seconds) == before


@pytest.mark.asyncio
async def test_edit_times_recomputes_duration(timer_engine, make_user, clock):
    user = make_user()
    entry = await _stopped_entry(timer_engine, user, clock)

    edited = await timer_engine.edit(user.id, entry.id, {"endTime": entry.start_time + timedelta(seconds=90)})
    assert edited.duration_seconds == 90

    with pytest.raises(ValidationError):
        await timer_engine.edit(user.id, entry.id, {"endTime": entry.start_time - timedelta(seconds=1)})


@pytest.mark.asyncio
async def test_unknown_edit_field_rejected(timer_engine, make_user, clock):
    user = make_user()
    entry = await _stopped_entry(timer_engine, user, clock)
    with pytest.raises(ValidationError):
        await timer_engine.edit(user.id, entry.id, {"isRunning": True})


@pytest.mark.asyncio
async def test_reassigning_project_resolves_new_rate(timer_engine, make_user, make_project, clock):
    user = make_user()
    cheap = make_project(user, name="Cheap", rate=Decimal("40"))
    pricey = make_project(user, name="Pricey", rate=Decimal("100"))

    entry = await timer_engine.start(user.id, project_id=cheap.id)
    clock.advance(60)
    await timer_engine.stop(user.id, entry.id)

    edited = await timer_engine.edit(user.id, entry.id, {"projectId": pricey.id})
    assert edited.project_id == pricey.id
    assert edited.hourly_rate_snapshot == Decimal("100")


@pytest.mark.asyncio
async def test_manual_create(timer_engine, make_user, publisher):
    user = make_user()
    start = datetime(2026, 1, 4, 8, 0, 0)

    entry = await timer_engine.create(user.id, start_time=start, end_time=start + timedelta(minutes=45))
    assert entry.is_running is False
    assert entry.duration_seconds == 2700
    assert publisher.names() == ["time-entry-created"]

    with pytest.raises(ValidationError):
        await timer_engine.create(user.id, start_time=start, end_time=start)


@pytest.mark.asyncio
async def test_manual_entry_does_not_block_start(timer_engine, make_user):
    user = make_user()
    start = datetime(2026, 1, 4, 8, 0, 0)
    await timer_engine.create(user.id, start_time=start, end_time=start + timedelta(hours=1))

    running = await timer_engine.start(user.id)
    assert running.is_running is True


@pytest.mark.asyncio
async def test_delete_emits_id(timer_engine, make_user, clock, publisher, store):
    user = make_user()
    entry = await _stopped_entry(timer_engine, user, clock)
    entry_id = entry.id

    await timer_engine.delete(user.id, entry_id)

    assert store.find_entry(user.id, entry_id) is None
    _, name, data = publisher.events[-1]
    assert name.value == "time-entry-deleted"
    assert data == {"id": entry_id}


@pytest.mark.asyncio
async def test_get_current(timer_engine, make_user, clock):
    user = make_user()
    assert timer_engine.get_current(user.id) is None
    entry = await timer_engine.start(user.id)
    assert timer_engine.get_current(user.id).id == entry.id


@pytest.mark.asyncio
async def test_publish_failure_does_not_undo_write(store, locks, clock, make_user):
    class BrokenPublisher:
        async def emit(self, user_id, name, data):
            raise RuntimeError("socket layer down")

    user = make_user()
    engine = TimerEngine(store, BrokenPublisher(), locks=locks, clock=clock)
    entry = await engine.start(user.id)
    assert store.find_running_entry(user.id).id == entry.id


@pytest.mark.asyncio
async def test_user_locks_are_dropped_once_unused():
    locks = UserLocks()
    lock = locks.get("u1")
    assert locks.get("u1") is lock
    assert len(locks) == 1

    async with lock:
        pass
    del lock
    gc.collect()
    assert len(locks) == 0
