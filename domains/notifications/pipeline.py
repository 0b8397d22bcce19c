"""Notification pipeline.

Every notification, reminder escalations included, goes through
`send_notification`, which runs four short-circuiting steps:

1. Preference filter - disabled priority, quiet hours, do-not-disturb
2. Optimal time - defer while the owner is in a meeting or unavailable
3. Batching - hold medium/low notifications for a grouped delivery
4. Delivery - fan out to enabled channels, log every attempt
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

from config import TIMEZONE
from logger import logger
from domains.reminders.errors import PersistenceError
from domains.reminders.keyed_state import KeyedState
from domains.reminders.models import utcnow
from domains.reminders.store import ReminderStore
from domains.reminders.timer import Timer
from . import config
from .availability import (
    AlwaysAvailable,
    AvailabilityLookup,
    MeetingLookup,
    NoMeetingLookup,
)
from .channels import DeliveryChannel
from .models import (
    ChannelResult,
    DeliveryResult,
    Notification,
    NotificationPreferences,
    NotificationPriority,
)
from .preferences import is_quiet_hours, load_preferences, merge_preferences

_NOT_BATCHED = {NotificationPriority.CRITICAL, NotificationPriority.HIGH}


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def deduplicate(notifications: list[Notification]) -> list[Notification]:
    """Drop repeats of the same (type, source_id or title), keeping the first."""
    seen = set()
    unique = []
    for notification in notifications:
        key = notification.dedupe_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(notification)
    return unique


def prioritize(notifications: list[Notification]) -> list[Notification]:
    """Highest priority first; arrival order kept within a priority."""
    return sorted(notifications, key=lambda n: n.priority.rank, reverse=True)


def format_batch_body(notifications: list[Notification]) -> str:
    top = notifications[:config.BATCH_SUMMARY_ITEMS]
    lines = [f"• {n.title or n.type}" for n in top]
    remaining = len(notifications) - len(top)
    if remaining > 0:
        lines.append(f"...and {remaining} more")
    return "\n".join(lines)


class NotificationPipeline:
    """Filters, times, batches and delivers notifications."""

    def __init__(
        self,
        store: ReminderStore,
        timer: Timer,
        channels: dict[str, DeliveryChannel],
        meeting_lookup: Optional[MeetingLookup] = None,
        availability: Optional[AvailabilityLookup] = None,
        clock: Callable[[], datetime] = utcnow,
        tz: str = TIMEZONE,
    ):
        self.store = store
        self.timer = timer
        self.channels = channels
        self.meeting_lookup = meeting_lookup or NoMeetingLookup()
        self.availability = availability or AlwaysAvailable()
        self._clock = clock
        self.tz = ZoneInfo(tz)

        # owner_id -> notifications waiting for the batch flush
        self._batches: KeyedState[list[Notification]] = KeyedState()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def send_notification(self, owner_id: str, notification: Notification) -> DeliveryResult:
        """Send a notification to an owner, honouring their preferences.

        Returns:
            DeliveryResult - `sent` with per-channel results, or not sent with
            reason "filtered", "queued" or "batched"
        """
        notification.owner_id = owner_id
        now = self._clock()
        prefs = load_preferences(self.store, owner_id)

        if not self._should_send(notification, prefs, now):
            logger.info(f"Filtered {notification.priority.value} '{notification.title}' for {owner_id}")
            return DeliveryResult(sent=False, reason="filtered", timestamp=now)

        optimal = await self._optimal_time(owner_id, notification, now)
        if optimal > now:
            self._queue(owner_id, notification, optimal, now)
            return DeliveryResult(sent=False, reason="queued", scheduled_for=optimal, timestamp=now)

        return await self._batch_or_deliver(owner_id, notification, prefs)

    async def _batch_or_deliver(
        self,
        owner_id: str,
        notification: Notification,
        prefs: NotificationPreferences,
    ) -> DeliveryResult:
        if self._should_batch(notification, prefs):
            await self._add_to_batch(owner_id, notification, prefs)
            return DeliveryResult(sent=False, reason="batched", timestamp=self._clock())

        return await self.deliver(owner_id, notification, prefs)

    # ------------------------------------------------------------------
    # Step 1: preference filter
    # ------------------------------------------------------------------

    def _should_send(self, notification: Notification, prefs: NotificationPreferences, now: datetime) -> bool:
        priority = notification.priority

        if not prefs.allows(priority):
            return False

        # Evaluated once per decision
        quiet = is_quiet_hours(prefs.quiet_hours, now.astimezone(self.tz).hour)
        if quiet and priority is not NotificationPriority.CRITICAL and not notification.urgent:
            return False

        if prefs.dnd and priority is not NotificationPriority.CRITICAL:
            return False

        return True

    # ------------------------------------------------------------------
    # Step 2: optimal time
    # ------------------------------------------------------------------

    async def _optimal_time(self, owner_id: str, notification: Notification, now: datetime) -> datetime:
        if notification.priority is NotificationPriority.CRITICAL or notification.urgent:
            return now

        try:
            meeting = await self.meeting_lookup.current_meeting(owner_id)
            if meeting.in_meeting:
                if meeting.end_time:
                    return _aware(meeting.end_time)
                return now + timedelta(minutes=config.MEETING_FALLBACK_MINUTES)
        except Exception as e:
            logger.error(f"Meeting lookup failed for {owner_id}, assuming free: {e}")

        try:
            availability = await self.availability.check(owner_id)
            if not availability.available:
                if availability.next_available_time:
                    return _aware(availability.next_available_time)
                return now + timedelta(minutes=config.UNAVAILABLE_FALLBACK_MINUTES)
        except Exception as e:
            logger.error(f"Availability check failed for {owner_id}, assuming available: {e}")

        return now

    def _queue(self, owner_id: str, notification: Notification, when: datetime, now: datetime) -> None:
        self.store.enqueue_notification(owner_id, notification.to_dict(), when, now)
        logger.info(f"Queued '{notification.title}' for {owner_id} until {when.isoformat()}")

    async def deliver_queued(self) -> int:
        """Deliver queued notifications whose time has come.

        Queued notifications already passed the preference filter and timing
        steps, so they re-enter at the batching step.

        Returns:
            Count of notifications processed
        """
        try:
            due = self.store.claim_due_notifications(self._clock())
        except PersistenceError as e:
            logger.error(f"Failed to read notification queue: {e}")
            return 0

        for owner_id, payload in due:
            try:
                notification = Notification.from_dict(payload)
                notification.owner_id = owner_id
                prefs = load_preferences(self.store, owner_id)
                await self._batch_or_deliver(owner_id, notification, prefs)
            except Exception as e:
                logger.error(f"Failed to deliver queued notification for {owner_id}: {e}")

        if due:
            logger.info(f"Notification queue: processed {len(due)} due notification(s)")
        return len(due)

    # ------------------------------------------------------------------
    # Step 3: batching
    # ------------------------------------------------------------------

    def _should_batch(self, notification: Notification, prefs: NotificationPreferences) -> bool:
        if not prefs.batching.enabled:
            return False
        return notification.priority not in _NOT_BATCHED

    async def _add_to_batch(self, owner_id: str, notification: Notification, prefs: NotificationPreferences) -> None:
        async with self._batches.locked(owner_id):
            batch = self._batches.get(owner_id)
            if batch is None:
                batch = []
                self._batches.set(owner_id, batch)
                run_at = self._clock() + timedelta(seconds=prefs.batching.window_seconds)
                self.timer.schedule_at(f"batch:{owner_id}", run_at, self.flush_batch, owner_id)
                logger.debug(f"Opened batch for {owner_id}, flush at {run_at.isoformat()}")
            batch.append(notification)

    def pending_batch(self, owner_id: str) -> list[Notification]:
        return list(self._batches.get(owner_id) or [])

    async def flush_batch(self, owner_id: str) -> Optional[DeliveryResult]:
        """Deliver the owner's batch as one grouped notification.

        Called by the timer when the batch window closes.
        """
        try:
            async with self._batches.locked(owner_id):
                batch = self._batches.pop(owner_id)
                if not batch:
                    return None

                unique = prioritize(deduplicate(batch))
                grouped = Notification(
                    type="batch",
                    title=f"You have {len(unique)} notifications",
                    body=format_batch_body(unique),
                    priority=NotificationPriority.MEDIUM,
                    payload={"notifications": [n.to_dict() for n in unique]},
                    owner_id=owner_id,
                )
                logger.info(f"Flushing batch for {owner_id}: {len(batch)} queued, {len(unique)} unique")
                return await self.deliver(owner_id, grouped)
        except Exception as e:
            logger.error(f"Batch flush failed for {owner_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Step 4: delivery
    # ------------------------------------------------------------------

    async def deliver(
        self,
        owner_id: str,
        notification: Notification,
        prefs: Optional[NotificationPreferences] = None,
    ) -> DeliveryResult:
        """Deliver now across every enabled channel that accepts the notification."""
        prefs = prefs or load_preferences(self.store, owner_id)

        selected = []
        for name in config.CHANNEL_ORDER:
            if not prefs.channels.get(name):
                continue
            channel = self.channels.get(name)
            if channel is None:
                logger.debug(f"Channel {name} enabled for {owner_id} but not configured")
                continue
            if channel.accepts(notification):
                selected.append(channel)

        results = await asyncio.gather(*(self._attempt(c, owner_id, notification) for c in selected))
        results = list(results)
        success = any(r.success for r in results)

        self._log(owner_id, notification, results, success)

        if not success:
            logger.warning(f"No channel delivered '{notification.title}' to {owner_id}")

        return DeliveryResult(
            sent=success,
            reason=None if success else "undelivered",
            channels=results,
            timestamp=self._clock(),
        )

    async def _attempt(self, channel: DeliveryChannel, owner_id: str, notification: Notification) -> ChannelResult:
        try:
            await asyncio.wait_for(
                channel.deliver(owner_id, notification),
                timeout=config.CHANNEL_TIMEOUT_SECONDS
            )
            return ChannelResult(channel=channel.name, success=True)
        except asyncio.TimeoutError:
            logger.error(f"{channel.name} delivery to {owner_id} timed out")
            return ChannelResult(channel=channel.name, success=False, error="timeout")
        except Exception as e:
            logger.error(f"{channel.name} delivery to {owner_id} failed: {e}")
            return ChannelResult(channel=channel.name, success=False, error=str(e))

    def _log(self, owner_id: str, notification: Notification, results: list[ChannelResult], success: bool) -> None:
        try:
            self.store.log_delivery(
                owner_id,
                notification.type,
                notification.priority.value,
                [{"channel": r.channel, "success": r.success, "error": r.error} for r in results],
                success,
                self._clock(),
            )
        except PersistenceError as e:
            logger.error(f"Failed to log notification for {owner_id}: {e}")

    # ------------------------------------------------------------------
    # Preferences and history
    # ------------------------------------------------------------------

    def get_preferences(self, owner_id: str) -> NotificationPreferences:
        return load_preferences(self.store, owner_id)

    def set_preferences(self, owner_id: str, preferences: Union[NotificationPreferences, dict]) -> NotificationPreferences:
        """Store preferences (merged over defaults) and return the effective set."""
        if isinstance(preferences, NotificationPreferences):
            preferences = preferences.to_dict()
        merged = merge_preferences(preferences)
        self.store.set_preferences(owner_id, merged.to_dict(), self._clock())
        return merged

    def get_delivery_log(self, owner_id: str, limit: int = 50) -> list[dict]:
        return self.store.get_delivery_log(owner_id, limit)
