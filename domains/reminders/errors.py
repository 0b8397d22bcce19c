"""Error taxonomy shared by the reminder and notification domains."""


class ReminderError(Exception):
    """Base class for all engine errors."""


class ValidationError(ReminderError):
    """Malformed input (bad due time, missing field). Never retried."""


class PersistenceError(ReminderError):
    """The store could not be read or written. Surfaced to the caller."""


class DeliveryError(ReminderError):
    """A delivery channel failed to hand off a notification."""

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class NotFoundError(ReminderError):
    """Operation on an unknown or deleted reminder."""
