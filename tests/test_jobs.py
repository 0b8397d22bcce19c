"""Tests for the periodic background jobs."""

import os
import sys
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest
from apscheduler.triggers.interval import IntervalTrigger

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from domains.reminders.timer import Timer
from jobs import register_due_sweep, register_notification_queue
from jobs.due_sweep import due_sweep
from jobs.notification_queue import deliver_queued_notifications


def test_register_due_sweep():
    scheduler = Mock()
    engine = Mock()

    register_due_sweep(Timer(scheduler), engine, seconds=60)

    call = scheduler.add_job.call_args
    assert call.args[0] is due_sweep
    assert call.kwargs["id"] == "reminder_due_sweep"
    assert call.kwargs["args"] == [engine]
    assert isinstance(call.kwargs["trigger"], IntervalTrigger)
    assert call.kwargs["trigger"].interval == timedelta(seconds=60)


def test_register_notification_queue():
    scheduler = Mock()
    pipeline = Mock()

    register_notification_queue(Timer(scheduler), pipeline)

    call = scheduler.add_job.call_args
    assert call.args[0] is deliver_queued_notifications
    assert call.kwargs["id"] == "notification_queue"
    assert call.kwargs["max_instances"] == 1


@pytest.mark.asyncio
async def test_due_sweep_triggers_overdue(engine, store, clock):
    reminder = await engine.create_reminder("u1", "Overdue", clock() - timedelta(minutes=2))

    assert await due_sweep(engine) == 1
    assert store.get_reminder(reminder.id).status.value == "triggered"


@pytest.mark.asyncio
async def test_jobs_never_raise():
    engine = Mock()
    engine.sweep_due = AsyncMock(side_effect=RuntimeError("boom"))
    pipeline = Mock()
    pipeline.deliver_queued = AsyncMock(side_effect=RuntimeError("boom"))

    assert await due_sweep(engine) == 0
    assert await deliver_queued_notifications(pipeline) == 0
