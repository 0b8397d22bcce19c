"""Standalone scheduled jobs."""

from .due_sweep import register_due_sweep
from .notification_queue import register_notification_queue

__all__ = [
    "register_due_sweep",
    "register_notification_queue"
]
