"""Delivery channels: push, SMS, email and in-app.

Each channel hands a notification to one transport and raises
DeliveryError on failure. The pipeline decides which channels run.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from config import (
    PUSH_URL,
    PUSH_TOKEN,
    EMAIL_API_URL,
    EMAIL_API_KEY,
    TWILIO_ACCOUNT_SID,
    TWILIO_AUTH_TOKEN,
    TWILIO_SMS_FROM,
)
from logger import logger
from domains.reminders.errors import DeliveryError
from domains.reminders.store import ReminderStore
from . import config
from .models import Notification, NotificationPriority

# owner_id -> phone number / email address
RecipientLookup = Callable[[str], Optional[str]]

# ntfy priority scale (1 = min, 5 = max)
_PUSH_PRIORITY = {
    NotificationPriority.LOW: "2",
    NotificationPriority.MEDIUM: "3",
    NotificationPriority.HIGH: "4",
    NotificationPriority.CRITICAL: "5",
}


class DeliveryChannel(ABC):
    """Base class for all delivery channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Channel identifier (matches the preference key)."""
        pass

    def accepts(self, notification: Notification) -> bool:
        """Per-channel priority gate (default: everything)."""
        return True

    @abstractmethod
    async def deliver(self, owner_id: str, notification: Notification) -> None:
        """Send the notification.

        Raises:
            DeliveryError: If the transport rejected or failed the send
        """
        pass


class PushChannel(DeliveryChannel):
    """Push via an ntfy-style HTTP endpoint, one topic per owner."""

    def __init__(self, base_url: str, token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token

    @property
    def name(self) -> str:
        return "push"

    async def deliver(self, owner_id: str, notification: Notification) -> None:
        headers = {
            "Title": notification.title,
            "Priority": _PUSH_PRIORITY[notification.priority],
            "Tags": notification.type,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}/{owner_id}",
                    content=(notification.body or notification.title).encode("utf-8"),
                    headers=headers,
                    timeout=config.CHANNEL_TIMEOUT_SECONDS
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryError(self.name, str(e)) from e

        logger.debug(f"Push sent to {owner_id}: {notification.title}")


class SmsChannel(DeliveryChannel):
    """SMS via Twilio. Critical notifications only."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str,
                 recipient_lookup: RecipientLookup):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.recipient_lookup = recipient_lookup

    @property
    def name(self) -> str:
        return "sms"

    def accepts(self, notification: Notification) -> bool:
        return notification.priority is NotificationPriority.CRITICAL

    async def deliver(self, owner_id: str, notification: Notification) -> None:
        to_number = self.recipient_lookup(owner_id)
        if not to_number:
            raise DeliveryError(self.name, f"no phone number for {owner_id}")

        body = notification.title
        if notification.body:
            body = f"{notification.title}\n{notification.body}"

        def _send():
            from twilio.rest import Client as TwilioClient
            client = TwilioClient(self.account_sid, self.auth_token)
            return client.messages.create(body=body, from_=self.from_number, to=to_number)

        try:
            message = await asyncio.to_thread(_send)
        except Exception as e:
            raise DeliveryError(self.name, str(e)) from e

        logger.info(f"SMS sent to {owner_id} ({message.sid})")


class EmailChannel(DeliveryChannel):
    """Email via an HTTP mail relay. Low-priority, non-urgent only."""

    def __init__(self, api_url: str, recipient_lookup: RecipientLookup, api_key: Optional[str] = None):
        self.api_url = api_url
        self.api_key = api_key
        self.recipient_lookup = recipient_lookup

    @property
    def name(self) -> str:
        return "email"

    def accepts(self, notification: Notification) -> bool:
        return notification.priority is NotificationPriority.LOW and not notification.urgent

    async def deliver(self, owner_id: str, notification: Notification) -> None:
        address = self.recipient_lookup(owner_id)
        if not address:
            raise DeliveryError(self.name, f"no email address for {owner_id}")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.api_url,
                    headers=headers,
                    json={
                        "to": address,
                        "subject": notification.title,
                        "text": notification.body or notification.title,
                    },
                    timeout=config.CHANNEL_TIMEOUT_SECONDS
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryError(self.name, str(e)) from e

        logger.debug(f"Email sent to {owner_id}: {notification.title}")


class InAppChannel(DeliveryChannel):
    """Writes to the owner's in-app inbox table."""

    def __init__(self, store: ReminderStore, clock: Callable[[], datetime] = None):
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return "in_app"

    async def deliver(self, owner_id: str, notification: Notification) -> None:
        try:
            self.store.add_user_notification(
                owner_id,
                notification.type,
                notification.title,
                notification.body,
                notification.payload,
                notification.priority.value,
                self._clock(),
            )
        except Exception as e:
            raise DeliveryError(self.name, str(e)) from e


def build_channels(
    store: ReminderStore,
    phone_lookup: Optional[RecipientLookup] = None,
    email_lookup: Optional[RecipientLookup] = None,
) -> dict[str, DeliveryChannel]:
    """Create every channel that has its transport configured.

    In-app is always available. Push, SMS and email need their
    credentials in the environment (and a recipient lookup for SMS/email).
    """
    channels: dict[str, DeliveryChannel] = {"in_app": InAppChannel(store)}

    if PUSH_URL:
        channels["push"] = PushChannel(PUSH_URL, PUSH_TOKEN)
    else:
        logger.warning("PUSH_URL not configured - push channel disabled")

    if all([TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_SMS_FROM]) and phone_lookup:
        channels["sms"] = SmsChannel(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_SMS_FROM, phone_lookup)
    else:
        logger.warning("Twilio credentials not configured - SMS channel disabled")

    if EMAIL_API_URL and email_lookup:
        channels["email"] = EmailChannel(EMAIL_API_URL, email_lookup, EMAIL_API_KEY)
    else:
        logger.warning("EMAIL_API_URL not configured - email channel disabled")

    return channels
