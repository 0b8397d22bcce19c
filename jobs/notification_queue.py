"""Deferred notification delivery scheduled job.

Notifications held back for a meeting or an unavailable owner sit in the
notification queue until their scheduled time. This job claims and
delivers whatever is due.
"""

from config import QUEUE_SWEEP_INTERVAL_SECONDS
from logger import logger
from domains.notifications.pipeline import NotificationPipeline
from domains.reminders.timer import Timer

JOB_ID = "notification_queue"


async def deliver_queued_notifications(pipeline: NotificationPipeline) -> int:
    try:
        return await pipeline.deliver_queued()
    except Exception as e:
        logger.error(f"Notification queue pass failed: {e}")
        return 0


def register_notification_queue(timer: Timer, pipeline: NotificationPipeline,
                                seconds: int = QUEUE_SWEEP_INTERVAL_SECONDS):
    """Register the queued-notification delivery job with the scheduler."""
    timer.every(JOB_ID, seconds, deliver_queued_notifications, pipeline)
