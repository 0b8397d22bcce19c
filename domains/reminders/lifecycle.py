"""Reminder lifecycle: creation, triggering, acknowledgement and recurrence.

State machine for time reminders:
    pending -> triggered -> completed
    triggered -> snoozed -> pending (re-armed when the snooze elapses)
    pending -> completed

All transitions are compare-and-set in the store, so the in-memory timer,
the periodic due-sweep and user actions can hit the same reminder
concurrently without double-firing.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union
from zoneinfo import ZoneInfo

from dateutil.parser import parse as parse_datetime

from config import TIMEZONE
from logger import logger
from . import config
from .errors import NotFoundError, ValidationError
from .escalation import EscalationController
from .geofence import Coordinates, Geocoder, haversine_distance, parse_coordinates, resolve_location
from .models import (
    EscalationTarget,
    LocationReminder,
    LocationStatus,
    Priority,
    Recurrence,
    Reminder,
    ReminderStatus,
    utcnow,
)
from .store import ReminderStore
from .timer import Timer

_OPEN = (ReminderStatus.PENDING.value, ReminderStatus.TRIGGERED.value, ReminderStatus.SNOOZED.value)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _require(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value).strip()


def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value.value if isinstance(value, enum_cls) else str(value).lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field} {value!r} (expected one of: {allowed})")


class ReminderEngine:
    """Creates reminders, drives their state machine and feeds escalation."""

    def __init__(
        self,
        store: ReminderStore,
        timer: Timer,
        escalation: EscalationController,
        geocoder: Optional[Geocoder] = None,
        clock: Callable[[], datetime] = utcnow,
        tz: str = TIMEZONE,
    ):
        self.store = store
        self.timer = timer
        self.escalation = escalation
        self.geocoder = geocoder
        self._clock = clock
        self.tz = ZoneInfo(tz)

    @staticmethod
    def job_id(reminder_id: str) -> str:
        return f"reminder:{reminder_id}"

    def parse_due_time(self, due_time: Union[datetime, str]) -> datetime:
        """Normalise a due time to an aware UTC datetime.

        Naive values are taken to be in the local timezone.

        Raises:
            ValidationError: If the value can't be parsed
        """
        if isinstance(due_time, str):
            try:
                due_time = parse_datetime(due_time)
            except (ValueError, OverflowError) as e:
                raise ValidationError(f"Cannot parse due time {due_time!r}: {e}") from e
        if not isinstance(due_time, datetime):
            raise ValidationError(f"Due time must be a datetime or string, got {type(due_time).__name__}")
        if due_time.tzinfo is None:
            due_time = due_time.replace(tzinfo=self.tz)
        return due_time.astimezone(timezone.utc)

    # ------------------------------------------------------------------
    # Time reminders
    # ------------------------------------------------------------------

    async def create_reminder(
        self,
        owner_id: str,
        title: str,
        due_time: Union[datetime, str],
        description: str = "",
        priority: Union[Priority, str] = config.DEFAULT_PRIORITY,
        recurrence: Union[Recurrence, str, None] = None,
    ) -> Reminder:
        """Persist a reminder and arm its timer.

        A due time in the past fires on the next scheduler tick.

        Raises:
            ValidationError: Missing owner/title, bad priority/recurrence or due time
            PersistenceError: The store write failed (not retried)
        """
        owner_id = _require(owner_id, "owner_id")
        title = _require(title, "title")
        due = self.parse_due_time(due_time)
        priority = _parse_enum(Priority, priority, "priority")
        recurrence = _parse_enum(Recurrence, recurrence or Recurrence.NONE, "recurrence")

        reminder_id = _new_id("rem")
        reminder = Reminder(
            id=reminder_id,
            owner_id=owner_id,
            title=title,
            description=description or "",
            due_time=due,
            priority=priority,
            recurrence=recurrence,
            status=ReminderStatus.PENDING,
            created_at=self._clock(),
            series_start=due,
            series_id=reminder_id,
        )
        return self._persist_and_arm(reminder)

    def _persist_and_arm(self, reminder: Reminder) -> Reminder:
        self.store.insert_reminder(reminder)
        self.timer.schedule_at(self.job_id(reminder.id), reminder.due_time, self.fire, reminder.id)
        logger.info(f"Created reminder {reminder.id}: '{reminder.title}' due {reminder.due_time.isoformat()}")
        return reminder

    async def fire(self, reminder_id: str) -> bool:
        """Timer/sweep entry point. Never raises."""
        try:
            return await self.trigger_reminder(reminder_id)
        except Exception as e:
            logger.error(f"Failed to trigger reminder {reminder_id}: {e}")
            return False

    async def trigger_reminder(self, reminder_id: str) -> bool:
        """Move a due reminder to triggered and start escalation.

        Safe to call more than once: only the call that wins the
        pending -> triggered compare-and-set does anything.

        Returns:
            True if this call triggered the reminder
        """
        now = self._clock()
        current = self.store.get_reminder(reminder_id)
        if current is None:
            logger.debug(f"Reminder {reminder_id} no longer exists, trigger skipped")
            return False

        # A snooze that has elapsed re-arms the reminder first
        if current.status is ReminderStatus.SNOOZED:
            if current.due_time > now:
                return False
            self.store.transition_reminder(
                reminder_id, [ReminderStatus.SNOOZED.value], ReminderStatus.PENDING.value, None, now
            )

        if not self.store.transition_reminder(
            reminder_id, [ReminderStatus.PENDING.value], ReminderStatus.TRIGGERED.value, "triggered_at", now
        ):
            logger.debug(f"Reminder {reminder_id} not pending, trigger skipped")
            return False

        reminder = self.store.get_reminder(reminder_id)
        if reminder is None:
            return False

        logger.info(f"Triggered reminder {reminder_id}: '{reminder.title}'")
        await self.escalation.begin(EscalationTarget.for_reminder(reminder))

        if reminder.recurring and not self.store.occurrence_exists(reminder.series_id, reminder.occurrence + 1):
            try:
                self._create_next_occurrence(reminder)
            except Exception as e:
                logger.error(f"Failed to schedule next occurrence of {reminder_id}: {e}")

        return True

    def _create_next_occurrence(self, reminder: Reminder) -> Reminder:
        next_reminder = Reminder(
            id=_new_id("rem"),
            owner_id=reminder.owner_id,
            title=reminder.title,
            description=reminder.description,
            due_time=reminder.next_due_time(),
            priority=reminder.priority,
            recurrence=reminder.recurrence,
            status=ReminderStatus.PENDING,
            created_at=self._clock(),
            series_start=reminder.series_start,
            series_id=reminder.series_id,
            occurrence=reminder.occurrence + 1,
        )
        logger.info(f"Next {reminder.recurrence.value} occurrence of {reminder.id} -> {next_reminder.id}")
        return self._persist_and_arm(next_reminder)

    def _get_or_raise(self, reminder_id: str) -> Reminder:
        reminder = self.store.get_reminder(reminder_id)
        if reminder is None:
            raise NotFoundError(f"Reminder {reminder_id} not found")
        return reminder

    async def complete_reminder(self, reminder_id: str) -> bool:
        """Mark a reminder done. Stops its timer and escalation.

        Returns:
            True if it was completed now, False if it already was

        Raises:
            NotFoundError: Unknown reminder
        """
        self._get_or_raise(reminder_id)
        completed = self.store.transition_reminder(
            reminder_id, _OPEN, ReminderStatus.COMPLETED.value, "completed_at", self._clock()
        )
        self.timer.cancel(self.job_id(reminder_id))
        self.escalation.cancel(f"time:{reminder_id}")
        if completed:
            logger.info(f"Completed reminder {reminder_id}")
        return completed

    async def snooze_reminder(self, reminder_id: str, minutes: int = config.DEFAULT_SNOOZE_MINUTES) -> Reminder:
        """Snooze a reminder for `minutes`; it fires again afterwards.

        Raises:
            ValidationError: Non-positive minutes, or the reminder is completed
            NotFoundError: Unknown reminder
        """
        if minutes is None or minutes <= 0:
            raise ValidationError("Snooze minutes must be positive")

        self._get_or_raise(reminder_id)
        now = self._clock()
        new_due = now + timedelta(minutes=minutes)

        if not self.store.transition_reminder(
            reminder_id, _OPEN, ReminderStatus.SNOOZED.value, "snoozed_at", now, due_time=new_due
        ):
            raise ValidationError(f"Reminder {reminder_id} is completed and can't be snoozed")

        self.escalation.cancel(f"time:{reminder_id}")
        self.timer.schedule_at(self.job_id(reminder_id), new_due, self.fire, reminder_id)
        logger.info(f"Snoozed reminder {reminder_id} for {minutes} min")
        return self.store.get_reminder(reminder_id)

    async def delete_reminder(self, reminder_id: str) -> bool:
        """Remove a reminder entirely. In-flight re-checks become no-ops."""
        self.timer.cancel(self.job_id(reminder_id))
        self.escalation.cancel(f"time:{reminder_id}")
        deleted = self.store.delete_reminder(reminder_id)
        if deleted:
            logger.info(f"Deleted reminder {reminder_id}")
        return deleted

    def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        return self.store.get_reminder(reminder_id)

    def get_user_reminders(self, owner_id: str, status: Union[ReminderStatus, str, None] = None) -> list[Reminder]:
        """An owner's reminders ordered by due time, optionally filtered by status."""
        if status is not None:
            status = _parse_enum(ReminderStatus, status, "status").value
        return self.store.list_reminders(owner_id, status)

    # ------------------------------------------------------------------
    # Location reminders
    # ------------------------------------------------------------------

    async def create_location_reminder(
        self,
        owner_id: str,
        title: str,
        location: Any,
        radius: float = config.DEFAULT_RADIUS_METERS,
        description: str = "",
        priority: Union[Priority, str] = config.DEFAULT_PRIORITY,
    ) -> LocationReminder:
        """Persist a geofence reminder. It fires from position reports only.

        Raises:
            ValidationError: Missing fields, radius <= 0, or unresolvable location
            PersistenceError: The store write failed
        """
        owner_id = _require(owner_id, "owner_id")
        title = _require(title, "title")
        priority = _parse_enum(Priority, priority, "priority")
        try:
            radius = float(radius)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid radius {radius!r}")
        if radius <= 0:
            raise ValidationError("Radius must be greater than zero")

        coords = await resolve_location(location, self.geocoder)
        label = location if isinstance(location, str) else f"{coords.lat},{coords.lng}"

        reminder = LocationReminder(
            id=_new_id("loc"),
            owner_id=owner_id,
            title=title,
            description=description or "",
            location=label,
            latitude=coords.lat,
            longitude=coords.lng,
            radius=radius,
            priority=priority,
            status=LocationStatus.PENDING,
            created_at=self._clock(),
        )
        self.store.insert_location_reminder(reminder)
        logger.info(f"Created location reminder {reminder.id}: '{title}' within {radius:.0f}m of {label}")
        return reminder

    async def evaluate_position(self, owner_id: str, position: Any) -> list[str]:
        """Check an owner's pending location reminders against a position report.

        Returns:
            IDs of reminders triggered by this report

        Raises:
            ValidationError: If the position isn't valid coordinates
        """
        current = parse_coordinates(position)
        if current is None:
            raise ValidationError(f"Invalid position: {position!r}")

        triggered = []
        for reminder in self.store.list_location_reminders(owner_id, LocationStatus.PENDING.value):
            try:
                if await self._evaluate_one(reminder, current):
                    triggered.append(reminder.id)
            except Exception as e:
                logger.error(f"Failed to evaluate location reminder {reminder.id}: {e}")
        return triggered

    async def _evaluate_one(self, reminder: LocationReminder, current: Coordinates) -> bool:
        distance = haversine_distance(current, Coordinates(reminder.latitude, reminder.longitude))
        if distance > reminder.radius:
            return False

        if not self.store.transition_location_reminder(
            reminder.id, LocationStatus.PENDING.value, LocationStatus.TRIGGERED.value,
            "triggered_at", self._clock()
        ):
            return False

        logger.info(f"Location reminder {reminder.id} triggered ({distance:.0f}m from target)")
        reminder = self.store.get_location_reminder(reminder.id)
        if reminder is not None:
            await self.escalation.begin(EscalationTarget.for_location(reminder))
        return True

    async def complete_location_reminder(self, reminder_id: str) -> bool:
        """Acknowledge a triggered location reminder, stopping its escalation.

        Raises:
            NotFoundError: Unknown reminder
        """
        reminder = self.store.get_location_reminder(reminder_id)
        if reminder is None:
            raise NotFoundError(f"Location reminder {reminder_id} not found")

        now = self._clock()
        completed = False
        for from_status in (LocationStatus.TRIGGERED.value, LocationStatus.PENDING.value):
            if self.store.transition_location_reminder(
                reminder_id, from_status, LocationStatus.COMPLETED.value, "completed_at", now
            ):
                completed = True
                break

        self.escalation.cancel(f"location:{reminder_id}")
        return completed

    def get_location_reminders(self, owner_id: str, status: Union[LocationStatus, str, None] = None) -> list[LocationReminder]:
        if status is not None:
            status = _parse_enum(LocationStatus, status, "status").value
        return self.store.list_location_reminders(owner_id, status)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def load_pending(self) -> int:
        """Re-arm timers for reminders still waiting for their due time.

        Overdue reminders are left to the due-sweep so a restart doesn't
        fire everything at once.

        Returns:
            Count of reminders re-armed
        """
        loaded = 0
        for reminder in self.store.get_future_reminders(self._clock()):
            try:
                self.timer.schedule_at(self.job_id(reminder.id), reminder.due_time, self.fire, reminder.id)
                loaded += 1
            except Exception as e:
                logger.error(f"Failed to re-arm reminder {reminder.id}: {e}")

        logger.info(f"Re-armed {loaded} pending reminder(s) from the store")
        return loaded

    async def sweep_due(self) -> int:
        """Trigger every reminder whose due time has passed.

        Returns:
            Count of reminders this pass triggered
        """
        try:
            due = self.store.get_due_reminders(self._clock())
        except Exception as e:
            logger.error(f"Due-sweep could not read reminders: {e}")
            return 0

        triggered = 0
        for reminder in due:
            if await self.fire(reminder.id):
                triggered += 1

        if triggered:
            logger.info(f"Due-sweep triggered {triggered} reminder(s)")
        return triggered
