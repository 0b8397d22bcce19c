"""Notification preference defaults, merging and quiet-hours evaluation."""

from typing import Any, Optional

from logger import logger
from domains.reminders.errors import PersistenceError
from domains.reminders.store import ReminderStore
from .models import Batching, NotificationPreferences, QuietHours


def merge_preferences(stored: Optional[dict[str, Any]]) -> NotificationPreferences:
    """Overlay stored preferences on the defaults.

    Unknown keys are ignored and malformed values fall back to the default,
    so a half-written preference row can never break delivery.
    """
    prefs = NotificationPreferences()
    if not isinstance(stored, dict):
        if stored:
            logger.warning(f"Ignoring malformed preference row: {stored!r}")
        return prefs

    quiet = stored.get("quiet_hours") or {}
    if isinstance(quiet, dict):
        try:
            prefs.quiet_hours = QuietHours(
                start=int(quiet.get("start", prefs.quiet_hours.start)) % 24,
                end=int(quiet.get("end", prefs.quiet_hours.end)) % 24,
            )
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed quiet hours: {quiet}")

    if "dnd" in stored:
        prefs.dnd = bool(stored["dnd"])

    for field_name in ("channels", "priorities"):
        toggles = stored.get(field_name) or {}
        if not isinstance(toggles, dict):
            logger.warning(f"Ignoring malformed {field_name}: {toggles!r}")
            continue
        current = getattr(prefs, field_name)
        for name, enabled in toggles.items():
            if name in current:
                current[name] = bool(enabled)

    batching = stored.get("batching") or {}
    if isinstance(batching, dict):
        try:
            prefs.batching = Batching(
                enabled=bool(batching.get("enabled", prefs.batching.enabled)),
                window_seconds=max(1, int(batching.get("window_seconds", prefs.batching.window_seconds))),
            )
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed batching settings: {batching}")

    return prefs


def load_preferences(store: ReminderStore, owner_id: str) -> NotificationPreferences:
    """Preferences for an owner, defaults if none are stored or the read fails."""
    try:
        stored = store.get_preferences(owner_id)
    except (PersistenceError, ValueError) as e:
        logger.error(f"Failed to load preferences for {owner_id}, using defaults: {e}")
        stored = None
    return merge_preferences(stored)


def is_quiet_hours(quiet_hours: QuietHours, hour: int) -> bool:
    """Whether `hour` (0-23, local) falls in the quiet window.

    A window with start > end spans midnight (22 -> 8). Equal start and end
    means no quiet hours.
    """
    start, end = quiet_hours.start, quiet_hours.end
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end
