"""Tests for the reminder lifecycle: creation, triggering, recurrence, snooze."""

import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import ManualTimer
from domains.reminders.errors import NotFoundError, PersistenceError, ValidationError
from domains.reminders.lifecycle import ReminderEngine
from domains.reminders.models import Priority, Recurrence, ReminderStatus


# ----------------------------------------------------------------------
# Creation
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_reminder_persists_and_arms_timer(engine, timer, store, clock):
    due = clock() + timedelta(hours=1)

    reminder = await engine.create_reminder("u1", "Call mum", due, description="Sunday call", priority="high")

    stored = store.get_reminder(reminder.id)
    assert stored.status is ReminderStatus.PENDING
    assert stored.priority is Priority.HIGH
    assert stored.description == "Sunday call"
    assert timer.is_scheduled(ReminderEngine.job_id(reminder.id))
    assert timer.run_time(ReminderEngine.job_id(reminder.id)) == due


@pytest.mark.asyncio
async def test_past_due_reminder_triggers_immediately(engine, timer, store, clock):
    """Test a due time in the past fires on the next tick rather than never."""
    reminder = await engine.create_reminder("u1", "Overdue", clock() - timedelta(seconds=1))

    await timer.run_due()

    stored = store.get_reminder(reminder.id)
    assert stored.status is ReminderStatus.TRIGGERED
    assert stored.triggered_at == clock()


@pytest.mark.asyncio
async def test_future_reminder_waits_for_due_time(engine, timer, store, clock):
    reminder = await engine.create_reminder("u1", "Later", clock() + timedelta(minutes=30))

    await timer.advance(minutes=29)
    assert store.get_reminder(reminder.id).status is ReminderStatus.PENDING

    await timer.advance(minutes=1)
    assert store.get_reminder(reminder.id).status is ReminderStatus.TRIGGERED


@pytest.mark.asyncio
async def test_naive_due_time_uses_local_timezone(engine):
    # 18:00 London in June is 17:00 UTC
    reminder = await engine.create_reminder("u1", "Dinner", "2026-06-15 18:00")
    assert reminder.due_time == datetime(2026, 6, 15, 17, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {"due_time": "not a date"},
    {"due_time": 12345},
    {"title": "   "},
    {"owner_id": ""},
    {"priority": "urgent"},
    {"recurrence": "hourly"},
])
async def test_create_reminder_validation(engine, timer, clock, kwargs):
    args = {"owner_id": "u1", "title": "Valid", "due_time": clock() + timedelta(hours=1)}
    args.update(kwargs)

    with pytest.raises(ValidationError):
        await engine.create_reminder(**args)

    assert timer.jobs == {}


@pytest.mark.asyncio
async def test_persistence_failure_propagates_and_arms_nothing(engine, timer, store, clock):
    with patch.object(store, "insert_reminder", side_effect=PersistenceError("disk full")):
        with pytest.raises(PersistenceError):
            await engine.create_reminder("u1", "Lost", clock() + timedelta(hours=1))

    assert timer.jobs == {}


# ----------------------------------------------------------------------
# Triggering and status transitions
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_trigger_is_idempotent(engine, store, clock):
    """Test the timer and the sweep racing on one reminder trigger it once."""
    reminder = await engine.create_reminder("u1", "Once", clock() - timedelta(minutes=1))

    assert await engine.trigger_reminder(reminder.id) is True
    assert await engine.trigger_reminder(reminder.id) is False
    assert await engine.sweep_due() == 0


@pytest.mark.asyncio
async def test_complete_pending_reminder_directly(engine, timer, store, clock):
    reminder = await engine.create_reminder("u1", "Early", clock() + timedelta(hours=1))

    assert await engine.complete_reminder(reminder.id) is True

    assert store.get_reminder(reminder.id).status is ReminderStatus.COMPLETED
    assert not timer.is_scheduled(ReminderEngine.job_id(reminder.id))


@pytest.mark.asyncio
async def test_completed_is_terminal(engine, timer, store, clock):
    reminder = await engine.create_reminder("u1", "Done", clock() - timedelta(seconds=1))
    await timer.run_due()
    await engine.complete_reminder(reminder.id)

    assert await engine.complete_reminder(reminder.id) is False
    assert await engine.trigger_reminder(reminder.id) is False
    with pytest.raises(ValidationError):
        await engine.snooze_reminder(reminder.id, 10)
    assert store.get_reminder(reminder.id).status is ReminderStatus.COMPLETED


@pytest.mark.asyncio
async def test_unknown_reminder_raises_not_found(engine):
    with pytest.raises(NotFoundError):
        await engine.complete_reminder("rem_missing")
    with pytest.raises(NotFoundError):
        await engine.snooze_reminder("rem_missing", 10)


@pytest.mark.asyncio
async def test_fire_never_raises(engine, store):
    with patch.object(store, "get_reminder", side_effect=PersistenceError("locked")):
        assert await engine.fire("rem_1") is False


# ----------------------------------------------------------------------
# Snooze
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_snooze_then_retrigger(engine, timer, store, clock):
    reminder = await engine.create_reminder("u1", "Stretch", clock() - timedelta(seconds=1))
    await timer.run_due()

    snoozed = await engine.snooze_reminder(reminder.id, 10)
    assert snoozed.status is ReminderStatus.SNOOZED
    assert snoozed.due_time == clock() + timedelta(minutes=10)

    await timer.advance(minutes=9)
    assert await engine.sweep_due() == 0
    assert store.get_reminder(reminder.id).status is ReminderStatus.SNOOZED

    await timer.advance(minutes=1)
    assert store.get_reminder(reminder.id).status is ReminderStatus.TRIGGERED


@pytest.mark.asyncio
async def test_early_fire_of_snoozed_reminder_is_ignored(engine, timer, store, clock):
    reminder = await engine.create_reminder("u1", "Stretch", clock() - timedelta(seconds=1))
    await timer.run_due()
    await engine.snooze_reminder(reminder.id, 10)

    assert await engine.trigger_reminder(reminder.id) is False
    assert store.get_reminder(reminder.id).status is ReminderStatus.SNOOZED


@pytest.mark.asyncio
@pytest.mark.parametrize("minutes", [0, -5])
async def test_snooze_rejects_non_positive_minutes(engine, clock, minutes):
    reminder = await engine.create_reminder("u1", "Nap", clock() + timedelta(hours=1))

    with pytest.raises(ValidationError):
        await engine.snooze_reminder(reminder.id, minutes)


# ----------------------------------------------------------------------
# Recurrence
# ----------------------------------------------------------------------

async def _trigger_series(engine, timer, store, clock, cycles):
    """Run a series through `cycles` triggers, returning each instance in order."""
    instances = []
    for _ in range(cycles):
        pending = store.list_reminders("u1", "pending")
        assert len(pending) == 1
        current = pending[0]
        instances.append(current)
        clock.now = current.due_time
        await timer.run_due()
        await engine.complete_reminder(current.id)
    return instances


@pytest.mark.asyncio
async def test_daily_recurrence_has_no_drift(engine, timer, store, clock):
    """Test the Nth instance is due exactly N days after the first."""
    first_due = clock() + timedelta(hours=2)
    await engine.create_reminder("u1", "Vitamins", first_due, recurrence="daily")

    instances = await _trigger_series(engine, timer, store, clock, cycles=4)

    for n, instance in enumerate(instances):
        assert instance.due_time == first_due + timedelta(days=n)
        assert instance.occurrence == n
        assert instance.title == "Vitamins"
        assert instance.recurrence is Recurrence.DAILY


@pytest.mark.asyncio
async def test_weekly_recurrence_is_anchored_to_due_time_not_now(engine, timer, store, clock):
    first_due = clock() + timedelta(minutes=5)
    await engine.create_reminder("u1", "Bins", first_due, recurrence="weekly", priority="high")

    # Trigger late (sweep after an outage); the next instance is still due_time + 1 week
    clock.advance(hours=3)
    await engine.sweep_due()

    pending = store.list_reminders("u1", "pending")
    assert [r.due_time for r in pending] == [first_due + timedelta(weeks=1)]
    assert pending[0].priority is Priority.HIGH


@pytest.mark.asyncio
async def test_monthly_recurrence_keeps_day_of_month(store, escalation, engine, timer, clock):
    clock.now = datetime(2026, 1, 31, 8, 0, tzinfo=timezone.utc)
    first_due = datetime(2026, 1, 31, 9, 0, tzinfo=timezone.utc)
    await engine.create_reminder("u1", "Rent", first_due, recurrence="monthly")

    instances = await _trigger_series(engine, timer, store, clock, cycles=4)

    assert [i.due_time.date().isoformat() for i in instances] == [
        "2026-01-31", "2026-02-28", "2026-03-31", "2026-04-30",
    ]


@pytest.mark.asyncio
async def test_retrigger_after_snooze_does_not_duplicate_next_occurrence(engine, timer, store, clock):
    reminder = await engine.create_reminder("u1", "Water plants", clock() - timedelta(seconds=1), recurrence="daily")
    await timer.run_due()
    await engine.snooze_reminder(reminder.id, 15)
    await timer.advance(minutes=15)

    assert store.get_reminder(reminder.id).status is ReminderStatus.TRIGGERED
    assert len(store.list_reminders("u1", "pending")) == 1


# ----------------------------------------------------------------------
# Deletion, queries and recovery
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_reminder(engine, timer, store, clock):
    reminder = await engine.create_reminder("u1", "Gone", clock() + timedelta(hours=1))

    assert await engine.delete_reminder(reminder.id) is True
    assert engine.get_reminder(reminder.id) is None
    assert not timer.is_scheduled(ReminderEngine.job_id(reminder.id))
    assert await engine.delete_reminder(reminder.id) is False


@pytest.mark.asyncio
async def test_get_user_reminders(engine, timer, clock):
    later = await engine.create_reminder("u1", "Later", clock() + timedelta(hours=2))
    sooner = await engine.create_reminder("u1", "Sooner", clock() + timedelta(hours=1))
    overdue = await engine.create_reminder("u1", "Overdue", clock() - timedelta(hours=1))
    await engine.create_reminder("u2", "Someone else's", clock() + timedelta(hours=1))
    await timer.run_due()

    assert [r.id for r in engine.get_user_reminders("u1")] == [overdue.id, sooner.id, later.id]
    assert [r.id for r in engine.get_user_reminders("u1", "pending")] == [sooner.id, later.id]
    assert [r.id for r in engine.get_user_reminders("u1", ReminderStatus.TRIGGERED)] == [overdue.id]

    with pytest.raises(ValidationError):
        engine.get_user_reminders("u1", "archived")


@pytest.mark.asyncio
async def test_load_pending_rearms_only_future_reminders(store, escalation, engine, clock):
    """Test restart recovery leaves overdue reminders to the due-sweep."""
    future = await engine.create_reminder("u1", "Future", clock() + timedelta(hours=1))
    overdue = await engine.create_reminder("u1", "Overdue", clock() - timedelta(minutes=10))

    # Simulate a restart: fresh timer, same store
    fresh_timer = ManualTimer(clock)
    restarted = ReminderEngine(store, fresh_timer, escalation, clock=clock)

    assert restarted.load_pending() == 1
    assert fresh_timer.is_scheduled(ReminderEngine.job_id(future.id))
    assert not fresh_timer.is_scheduled(ReminderEngine.job_id(overdue.id))
    assert store.get_reminder(overdue.id).status is ReminderStatus.PENDING

    assert await restarted.sweep_due() == 1
    assert store.get_reminder(overdue.id).status is ReminderStatus.TRIGGERED


@pytest.mark.asyncio
async def test_sweep_due_survives_store_failure(engine, store):
    with patch.object(store, "get_due_reminders", side_effect=PersistenceError("locked")):
        assert await engine.sweep_due() == 0
