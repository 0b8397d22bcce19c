"""Reminder records and their state enums."""

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from dateutil.relativedelta import relativedelta


class Priority(str, Enum):
    """Reminder priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Recurrence(str, Enum):
    """Recurrence pattern for repeating reminders."""
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    def step(self, count: int = 1) -> relativedelta:
        """Offset covering `count` occurrences of this pattern."""
        if self is Recurrence.DAILY:
            return relativedelta(days=count)
        if self is Recurrence.WEEKLY:
            return relativedelta(weeks=count)
        if self is Recurrence.MONTHLY:
            return relativedelta(months=count)
        return relativedelta()


class ReminderStatus(str, Enum):
    """Reminder lifecycle states.

    pending -> triggered -> completed
    triggered -> snoozed -> pending (re-armed when the snooze elapses)
    pending -> completed
    """
    PENDING = "pending"
    TRIGGERED = "triggered"
    COMPLETED = "completed"
    SNOOZED = "snoozed"


class LocationStatus(str, Enum):
    """Location reminder states."""
    PENDING = "pending"
    TRIGGERED = "triggered"
    COMPLETED = "completed"


# Statuses that count as "the owner acknowledged it"
ACKNOWLEDGED = {ReminderStatus.COMPLETED.value, ReminderStatus.SNOOZED.value, LocationStatus.COMPLETED.value}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialise an aware datetime as a UTC ISO string."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Reminder:
    """A time-based reminder."""
    id: str
    owner_id: str
    title: str
    description: str
    due_time: datetime
    priority: Priority
    recurrence: Recurrence
    status: ReminderStatus
    created_at: datetime
    series_start: datetime
    series_id: str = ""
    occurrence: int = 0
    triggered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    snoozed_at: Optional[datetime] = None

    @property
    def recurring(self) -> bool:
        return self.recurrence is not Recurrence.NONE

    def next_due_time(self) -> Optional[datetime]:
        """Due time of the following instance in the series.

        Counted from the series start so repeated month additions never
        drift (Jan 31 -> Feb 28 -> Mar 31, not Mar 28).
        """
        if not self.recurring:
            return None
        return self.series_start + self.recurrence.step(self.occurrence + 1)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Reminder":
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            description=row["description"] or "",
            due_time=from_iso(row["due_time"]),
            priority=Priority(row["priority"]),
            recurrence=Recurrence(row["recurrence_pattern"] or "none"),
            status=ReminderStatus(row["status"]),
            created_at=from_iso(row["created_at"]),
            series_start=from_iso(row["series_start"]),
            series_id=row["series_id"],
            occurrence=row["occurrence"],
            triggered_at=from_iso(row["triggered_at"]),
            completed_at=from_iso(row["completed_at"]),
            snoozed_at=from_iso(row["snoozed_at"]),
        )


@dataclass
class LocationReminder:
    """A geofence-triggered reminder."""
    id: str
    owner_id: str
    title: str
    description: str
    location: str
    latitude: float
    longitude: float
    radius: float
    priority: Priority
    status: LocationStatus
    created_at: datetime
    triggered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "LocationReminder":
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            description=row["description"] or "",
            location=row["location"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            radius=row["radius"],
            priority=Priority(row["priority"]),
            status=LocationStatus(row["status"]),
            created_at=from_iso(row["created_at"]),
            triggered_at=from_iso(row["triggered_at"]),
            completed_at=from_iso(row["completed_at"]),
        )


@dataclass
class EscalationTarget:
    """What the escalation controller needs to know about a triggered reminder."""
    kind: str  # "time" or "location"
    id: str
    owner_id: str
    title: str
    description: str
    priority: Priority
    triggered_at: datetime

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.id}"

    @classmethod
    def for_reminder(cls, reminder: Reminder) -> "EscalationTarget":
        return cls("time", reminder.id, reminder.owner_id, reminder.title,
                   reminder.description, reminder.priority,
                   reminder.triggered_at or utcnow())

    @classmethod
    def for_location(cls, reminder: LocationReminder) -> "EscalationTarget":
        return cls("location", reminder.id, reminder.owner_id, reminder.title,
                   reminder.description, reminder.priority,
                   reminder.triggered_at or utcnow())


@dataclass
class EscalationState:
    """Ephemeral per-reminder escalation progress. Level only increases."""
    level: int
    last_sent: datetime
    triggered_at: datetime
