"""Notifications domain - preference-aware delivery over push, SMS, email and in-app."""

from .models import (
    NotificationPriority,
    Notification,
    NotificationPreferences,
    DeliveryResult,
    ChannelResult,
)
from .channels import DeliveryChannel, build_channels
from .pipeline import NotificationPipeline

__all__ = [
    "NotificationPriority",
    "Notification",
    "NotificationPreferences",
    "DeliveryResult",
    "ChannelResult",
    "DeliveryChannel",
    "build_channels",
    "NotificationPipeline",
]
