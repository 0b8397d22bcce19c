"""Reminder & notification engine - service entry point.

Wires the store, scheduler, delivery channels, notification pipeline,
escalation controller and reminder engine together. On start it re-arms
timers for reminders persisted before the last shutdown and registers the
periodic background passes.
"""

import asyncio
import signal
from datetime import datetime
from typing import Any, Callable, Optional, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import CALENDAR_API_URL, DB_PATH, TIMEZONE
from logger import logger
from domains.notifications.availability import (
    AvailabilityLookup,
    CalendarMeetingLookup,
    MeetingLookup,
    NoMeetingLookup,
)
from domains.notifications.channels import DeliveryChannel, RecipientLookup, build_channels
from domains.notifications.models import DeliveryResult, Notification, NotificationPreferences
from domains.notifications.pipeline import NotificationPipeline
from domains.reminders.escalation import EscalationController
from domains.reminders.geofence import Geocoder, NominatimGeocoder
from domains.reminders.lifecycle import ReminderEngine
from domains.reminders.models import LocationReminder, Reminder, utcnow
from domains.reminders.store import ReminderStore
from domains.reminders.timer import Timer
from jobs import register_due_sweep, register_notification_queue


class ReminderService:
    """The public surface: reminders, position reports and notifications."""

    def __init__(
        self,
        store: ReminderStore,
        scheduler: AsyncIOScheduler,
        channels: Optional[dict[str, DeliveryChannel]] = None,
        meeting_lookup: Optional[MeetingLookup] = None,
        availability: Optional[AvailabilityLookup] = None,
        geocoder: Optional[Geocoder] = None,
        tz: str = TIMEZONE,
        clock: Callable[[], datetime] = utcnow,
        timer: Optional[Timer] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.timer = timer or Timer(scheduler, clock=clock)
        self.pipeline = NotificationPipeline(
            store,
            self.timer,
            channels if channels is not None else build_channels(store),
            meeting_lookup=meeting_lookup,
            availability=availability,
            clock=clock,
            tz=tz,
        )
        self.escalation = EscalationController(store, self.pipeline, self.timer, clock=clock)
        self.engine = ReminderEngine(store, self.timer, self.escalation, geocoder=geocoder, clock=clock, tz=tz)

    @classmethod
    def from_config(
        cls,
        phone_lookup: Optional[RecipientLookup] = None,
        email_lookup: Optional[RecipientLookup] = None,
    ) -> "ReminderService":
        """Build a service from environment configuration."""
        store = ReminderStore(DB_PATH)
        meeting_lookup = CalendarMeetingLookup(CALENDAR_API_URL) if CALENDAR_API_URL else NoMeetingLookup()
        if not CALENDAR_API_URL:
            logger.warning("CALENDAR_API_URL not configured - meeting lookups disabled")

        return cls(
            store,
            AsyncIOScheduler(timezone=TIMEZONE),
            channels=build_channels(store, phone_lookup, email_lookup),
            meeting_lookup=meeting_lookup,
            geocoder=NominatimGeocoder(),
        )

    def start(self) -> int:
        """Start the scheduler, recover persisted reminders and register sweeps.

        Must be called from inside the running event loop.

        Returns:
            Count of reminders re-armed from the store
        """
        self.scheduler.start()
        loaded = self.engine.load_pending()
        register_due_sweep(self.timer, self.engine)
        register_notification_queue(self.timer, self.pipeline)
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")
        return loaded

    def stop(self) -> None:
        self.timer.shutdown()
        self.store.close()
        logger.info("Reminder service stopped")

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def create_reminder(self, owner_id: str, title: str, due_time, description: str = "",
                              priority: str = "medium", recurrence: Optional[str] = None) -> Reminder:
        return await self.engine.create_reminder(owner_id, title, due_time, description, priority, recurrence)

    async def complete_reminder(self, reminder_id: str) -> bool:
        return await self.engine.complete_reminder(reminder_id)

    async def snooze_reminder(self, reminder_id: str, minutes: int = 15) -> Reminder:
        return await self.engine.snooze_reminder(reminder_id, minutes)

    async def delete_reminder(self, reminder_id: str) -> bool:
        return await self.engine.delete_reminder(reminder_id)

    async def get_user_reminders(self, owner_id: str, status: Optional[str] = None) -> list[Reminder]:
        return self.engine.get_user_reminders(owner_id, status)

    # ------------------------------------------------------------------
    # Location reminders
    # ------------------------------------------------------------------

    async def create_location_reminder(self, owner_id: str, title: str, location: Any, radius: float = 100,
                                       description: str = "", priority: str = "medium") -> LocationReminder:
        return await self.engine.create_location_reminder(owner_id, title, location, radius, description, priority)

    async def evaluate_position(self, owner_id: str, position: Any) -> list[str]:
        return await self.engine.evaluate_position(owner_id, position)

    async def complete_location_reminder(self, reminder_id: str) -> bool:
        return await self.engine.complete_location_reminder(reminder_id)

    async def get_location_reminders(self, owner_id: str, status: Optional[str] = None) -> list[LocationReminder]:
        return self.engine.get_location_reminders(owner_id, status)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def send_notification(self, owner_id: str, notification: Union[Notification, dict]) -> DeliveryResult:
        if isinstance(notification, dict):
            notification = Notification.from_dict(notification)
        return await self.pipeline.send_notification(owner_id, notification)

    async def get_preferences(self, owner_id: str) -> NotificationPreferences:
        return self.pipeline.get_preferences(owner_id)

    async def set_preferences(self, owner_id: str, preferences: Union[NotificationPreferences, dict]) -> NotificationPreferences:
        return self.pipeline.set_preferences(owner_id, preferences)

    async def get_delivery_log(self, owner_id: str, limit: int = 50) -> list[dict]:
        return self.pipeline.get_delivery_log(owner_id, limit)


async def main():
    service = ReminderService.from_config()
    loaded = service.start()
    logger.info(f"Reminder service running ({loaded} reminder(s) re-armed)")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    try:
        await stop.wait()
    finally:
        service.stop()


if __name__ == "__main__":
    asyncio.run(main())
