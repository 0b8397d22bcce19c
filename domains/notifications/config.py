"""Notification pipeline configuration."""

# Optimal-time fallbacks when a lookup can't say when the owner is free
MEETING_FALLBACK_MINUTES = 15
UNAVAILABLE_FALLBACK_MINUTES = 30

# Per-channel delivery timeout
CHANNEL_TIMEOUT_SECONDS = 10

# Batch summary
BATCH_SUMMARY_ITEMS = 3

# Calendar lookup timeout
CALENDAR_TIMEOUT = 10

# Channel evaluation order
CHANNEL_ORDER = ("push", "sms", "email", "in_app")
