"""Reminders domain - time and location reminders with escalation.

Time reminders fire from the scheduler (backed by a periodic due-sweep),
location reminders fire from position reports. Triggered reminders of
either kind escalate until the owner completes or snoozes them.
"""

from .errors import ReminderError, ValidationError, PersistenceError, DeliveryError, NotFoundError
from .models import (
    Priority,
    Recurrence,
    ReminderStatus,
    LocationStatus,
    Reminder,
    LocationReminder,
)
from .store import ReminderStore
from .timer import Timer
from .escalation import EscalationController, EscalationOutcome
from .lifecycle import ReminderEngine

__all__ = [
    "ReminderError",
    "ValidationError",
    "PersistenceError",
    "DeliveryError",
    "NotFoundError",
    "Priority",
    "Recurrence",
    "ReminderStatus",
    "LocationStatus",
    "Reminder",
    "LocationReminder",
    "ReminderStore",
    "Timer",
    "EscalationController",
    "EscalationOutcome",
    "ReminderEngine",
]
