"""Notification request, preference and result types."""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class NotificationPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK = {
    NotificationPriority.CRITICAL: 4,
    NotificationPriority.HIGH: 3,
    NotificationPriority.MEDIUM: 2,
    NotificationPriority.LOW: 1,
}

CHANNEL_NAMES = ("push", "sms", "email", "in_app")


@dataclass
class Notification:
    """A one-off notification request. Not persisted itself."""
    type: str
    title: str
    body: str = ""
    priority: NotificationPriority = NotificationPriority.MEDIUM
    urgent: bool = False
    payload: dict[str, Any] = field(default_factory=dict)
    owner_id: Optional[str] = None
    source_id: Optional[str] = None

    def __post_init__(self):
        self.priority = NotificationPriority(self.priority)

    @property
    def dedupe_key(self) -> tuple[str, str]:
        return (self.type, self.source_id or self.title)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["priority"] = self.priority.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Notification":
        return cls(
            type=data["type"],
            title=data["title"],
            body=data.get("body", ""),
            priority=data.get("priority", "medium"),
            urgent=bool(data.get("urgent", False)),
            payload=data.get("payload") or {},
            owner_id=data.get("owner_id"),
            source_id=data.get("source_id"),
        )


@dataclass
class QuietHours:
    start: int = 22
    end: int = 8


@dataclass
class Batching:
    enabled: bool = True
    window_seconds: int = 3600


@dataclass
class NotificationPreferences:
    """Per-owner delivery preferences. Defaults apply when nothing is stored."""
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    dnd: bool = False
    channels: dict[str, bool] = field(default_factory=lambda: {
        "push": True,
        "sms": False,
        "email": False,
        "in_app": True,
    })
    priorities: dict[str, bool] = field(default_factory=lambda: {
        "critical": True,
        "high": True,
        "medium": True,
        "low": False,
    })
    batching: Batching = field(default_factory=Batching)

    def allows(self, priority: NotificationPriority) -> bool:
        return self.priorities.get(priority.value, False)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ChannelResult:
    channel: str
    success: bool
    error: Optional[str] = None


@dataclass
class DeliveryResult:
    """Outcome of a send_notification call."""
    sent: bool
    reason: Optional[str] = None  # filtered | queued | batched | undelivered
    channels: list[ChannelResult] = field(default_factory=list)
    scheduled_for: Optional[datetime] = None
    timestamp: Optional[datetime] = None

    @property
    def filtered(self) -> bool:
        return self.reason == "filtered"

    @property
    def queued(self) -> bool:
        return self.reason == "queued"

    @property
    def batched(self) -> bool:
        return self.reason == "batched"
