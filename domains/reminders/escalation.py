"""Escalation controller for triggered reminders.

Levels:
- 1 (visual): delivered on trigger, priority from the reminder
- 2 (audible): 5 minutes later if not acknowledged, priority high
- 3 (repeated): 5 minutes after level 2 if still not acknowledged,
  priority high, asks the client to repeat every 5 minutes

Each step after level 1 is a scheduled re-check that re-reads the
reminder's status from the store. Escalation is driven by elapsed time
and acknowledgement only, never by whether the previous level was delivered.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Callable

from logger import logger
from domains.notifications.models import Notification, NotificationPriority
from . import config
from .errors import PersistenceError
from .keyed_state import KeyedState
from .models import (
    ACKNOWLEDGED,
    EscalationState,
    EscalationTarget,
    LocationStatus,
    ReminderStatus,
    utcnow,
)
from .store import ReminderStore
from .timer import Timer

if TYPE_CHECKING:
    from domains.notifications.pipeline import NotificationPipeline

_TRIGGERED = {ReminderStatus.TRIGGERED.value, LocationStatus.TRIGGERED.value}


class EscalationOutcome(Enum):
    """Result of a scheduled re-check."""
    ESCALATE = "escalate"
    SKIP_TERMINAL = "skip_terminal"
    SKIP_NOT_FOUND = "skip_not_found"


def build_notification(target: EscalationTarget, level: int) -> Notification:
    """Notification for a given escalation level."""
    body = target.title
    if target.description:
        body = f"{target.title} - {target.description}"

    payload = {
        "reminder_id": target.id,
        "reminder_kind": target.kind,
        "escalation_level": level,
        "visual": True,
        "sound": level >= 2,
    }

    if level == 1:
        priority = NotificationPriority(target.priority.value)
        title = "Reminder"
    elif level == 2:
        priority = NotificationPriority.HIGH
        title = "Reminder"
    else:
        priority = NotificationPriority.HIGH
        title = "Reminder (Repeated)"
        payload["repeat"] = True
        payload["repeat_interval_seconds"] = config.REPEAT_INTERVAL_SECONDS

    return Notification(
        type="reminder",
        title=title,
        body=body,
        priority=priority,
        payload=payload,
        owner_id=target.owner_id,
        source_id=target.id,
    )


class EscalationController:
    """Owns escalation state; the only writer of it."""

    def __init__(
        self,
        store: ReminderStore,
        pipeline: "NotificationPipeline",
        timer: Timer,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.pipeline = pipeline
        self.timer = timer
        self._clock = clock
        self._states: KeyedState[EscalationState] = KeyedState()
        self._targets: dict[str, EscalationTarget] = {}

    @staticmethod
    def job_id(key: str) -> str:
        return f"escalate:{key}"

    def state(self, key: str):
        return self._states.get(key)

    async def begin(self, target: EscalationTarget) -> None:
        """Start escalation for a freshly triggered reminder (sends level 1)."""
        async with self._states.locked(target.key):
            now = self._clock()
            self._states.set(target.key, EscalationState(level=1, last_sent=now, triggered_at=target.triggered_at))
            self._targets[target.key] = target
            self._schedule_recheck(target.key, now)

        logger.info(f"Escalation started for {target.key} ({target.title})")
        await self._send(target, 1)

    async def recheck(self, key: str) -> EscalationOutcome:
        """Scheduled re-check: escalate one level if still unacknowledged."""
        try:
            return await self._recheck(key)
        except Exception as e:
            logger.error(f"Escalation re-check failed for {key}: {e}")
            return EscalationOutcome.SKIP_NOT_FOUND

    async def _recheck(self, key: str) -> EscalationOutcome:
        async with self._states.locked(key):
            state = self._states.get(key)
            target = self._targets.get(key)
            if state is None or target is None:
                logger.debug(f"Escalation re-check for {key}: no state, skipping")
                return EscalationOutcome.SKIP_NOT_FOUND

            try:
                status = self.store.get_status(target.kind, target.id)
            except PersistenceError as e:
                # Keep escalating on schedule; the store may come back
                logger.error(f"Could not read status for {key}: {e}")
                status = ReminderStatus.TRIGGERED.value

            if status is None:
                self._drop(key)
                logger.info(f"Escalation for {key} stopped: reminder no longer exists")
                return EscalationOutcome.SKIP_NOT_FOUND

            if status in ACKNOWLEDGED or status not in _TRIGGERED:
                self._drop(key)
                logger.info(f"Escalation for {key} stopped: status is {status}")
                return EscalationOutcome.SKIP_TERMINAL

            level = state.level + 1
            now = self._clock()
            state.level = level
            state.last_sent = now

            if level < config.ESCALATION_MAX_LEVEL:
                self._schedule_recheck(key, now)
            else:
                # Final level; nothing left to track
                self._drop(key)

        logger.info(f"Escalating {key} to level {level}")
        await self._send(target, level)
        return EscalationOutcome.ESCALATE

    def cancel(self, key: str) -> bool:
        """Stop escalation for a reminder (acknowledged, snoozed or deleted).

        Returns:
            True if there was escalation state or a pending re-check
        """
        had_job = self.timer.cancel(self.job_id(key))
        had_state = self._states.pop(key) is not None
        self._targets.pop(key, None)
        if had_job or had_state:
            logger.info(f"Escalation cancelled for {key}")
        return had_job or had_state

    def _drop(self, key: str) -> None:
        self._states.pop(key)
        self._targets.pop(key, None)

    def _schedule_recheck(self, key: str, now: datetime) -> None:
        run_at = now + timedelta(minutes=config.ESCALATION_INTERVAL_MINUTES)
        self.timer.schedule_at(self.job_id(key), run_at, self.recheck, key)

    async def _send(self, target: EscalationTarget, level: int) -> None:
        notification = build_notification(target, level)
        try:
            result = await self.pipeline.send_notification(target.owner_id, notification)
            logger.info(
                f"Escalation level {level} for {target.key}: "
                f"sent={result.sent} reason={result.reason}"
            )
        except Exception as e:
            logger.error(f"Escalation level {level} for {target.key} failed: {e}")
