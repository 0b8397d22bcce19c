"""Due-reminder sweep scheduled job.

Runs every minute and triggers any time reminder whose due time has
passed but whose timer never fired (restart, lost job, clock jump).
Triggering is compare-and-set, so a sweep racing a live timer is harmless.
"""

from config import DUE_SWEEP_INTERVAL_SECONDS
from logger import logger
from domains.reminders.lifecycle import ReminderEngine
from domains.reminders.timer import Timer

JOB_ID = "reminder_due_sweep"


async def due_sweep(engine: ReminderEngine) -> int:
    """Trigger overdue reminders. Never raises."""
    try:
        return await engine.sweep_due()
    except Exception as e:
        logger.error(f"Due-sweep failed: {e}")
        return 0


def register_due_sweep(timer: Timer, engine: ReminderEngine,
                       seconds: int = DUE_SWEEP_INTERVAL_SECONDS):
    """Register the due-reminder sweep with the scheduler."""
    timer.every(JOB_ID, seconds, due_sweep, engine)
