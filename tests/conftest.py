"""Pytest configuration and fixtures.

Time is driven by hand: a FakeClock everything reads "now" from, and a
ManualTimer that stands in for the APScheduler-backed Timer and only runs
jobs when a test asks it to.
"""

import inspect
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Keep log files out of the working tree
os.environ.setdefault("REMINDER_DATA_DIR", tempfile.mkdtemp(prefix="reminder-engine-test-"))

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from domains.notifications.channels import DeliveryChannel
from domains.notifications.pipeline import NotificationPipeline
from domains.reminders.errors import DeliveryError
from domains.reminders.escalation import EscalationController
from domains.reminders.lifecycle import ReminderEngine
from domains.reminders.store import ReminderStore

# Midday in London (BST), well outside the default 22:00-08:00 quiet hours
NOON = datetime(2026, 6, 15, 11, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOON):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ManualTimer:
    """Same surface as Timer, but jobs only run from run_due()."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.jobs = {}
        self.periodic = {}

    def schedule_at(self, job_id, run_at, func, *args):
        now = self.clock()
        self.jobs[job_id] = (run_at if run_at > now else now, func, args)
        return job_id

    def every(self, job_id, seconds, func, *args):
        self.periodic[job_id] = (seconds, func, args)
        return job_id

    def cancel(self, job_id) -> bool:
        removed = self.jobs.pop(job_id, None) is not None
        return self.periodic.pop(job_id, None) is not None or removed

    def is_scheduled(self, job_id) -> bool:
        return job_id in self.jobs or job_id in self.periodic

    def run_time(self, job_id):
        return self.jobs[job_id][0]

    def pause(self):
        pass

    def resume(self):
        pass

    def shutdown(self):
        self.jobs.clear()
        self.periodic.clear()

    async def run_due(self) -> int:
        """Run every job due at the current clock time, earliest first."""
        ran = 0
        while True:
            now = self.clock()
            due = sorted((run_at, job_id) for job_id, (run_at, _, _) in self.jobs.items() if run_at <= now)
            if not due:
                return ran
            _, job_id = due[0]
            _, func, args = self.jobs.pop(job_id)
            result = func(*args)
            if inspect.isawaitable(result):
                await result
            ran += 1

    async def advance(self, **kwargs) -> int:
        self.clock.advance(**kwargs)
        return await self.run_due()


class RecordingChannel(DeliveryChannel):
    """Channel that records deliveries instead of sending them."""

    def __init__(self, name: str, fail: bool = False):
        self._name = name
        self.fail = fail
        self.sent = []

    @property
    def name(self) -> str:
        return self._name

    async def deliver(self, owner_id, notification):
        if self.fail:
            raise DeliveryError(self._name, "transport down")
        self.sent.append((owner_id, notification))


@pytest.fixture
def temp_db_path():
    """Unique temp database file per test."""
    fd, temp_path = tempfile.mkstemp(suffix="_reminders_test.db")
    os.close(fd)

    yield temp_path

    for suffix in ["", "-wal", "-shm"]:
        try:
            os.unlink(temp_path + suffix)
        except FileNotFoundError:
            pass


@pytest.fixture
def store(temp_db_path):
    reminder_store = ReminderStore(temp_db_path)
    yield reminder_store
    reminder_store.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timer(clock):
    return ManualTimer(clock)


@pytest.fixture
def channels():
    return {
        "push": RecordingChannel("push"),
        "in_app": RecordingChannel("in_app"),
    }


@pytest.fixture
def pipeline(store, timer, channels, clock):
    return NotificationPipeline(store, timer, channels, clock=clock, tz="Europe/London")


@pytest.fixture
def escalation(store, pipeline, timer, clock):
    return EscalationController(store, pipeline, timer, clock=clock)


@pytest.fixture
def engine(store, timer, escalation, clock):
    return ReminderEngine(store, timer, escalation, clock=clock, tz="Europe/London")
