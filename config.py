"""Global configuration for the reminder and notification engine."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Storage
DATA_DIR = Path(os.getenv("REMINDER_DATA_DIR", Path(os.getenv("LOCALAPPDATA", ".")) / "reminder-engine"))
DB_PATH = os.getenv("REMINDER_DB_PATH", str(DATA_DIR / "reminders.db"))

# Local timezone for quiet hours and naive due times
TIMEZONE = os.getenv("REMINDER_TIMEZONE", "Europe/London")

# Background passes
DUE_SWEEP_INTERVAL_SECONDS = int(os.getenv("DUE_SWEEP_INTERVAL_SECONDS", 60))
QUEUE_SWEEP_INTERVAL_SECONDS = int(os.getenv("QUEUE_SWEEP_INTERVAL_SECONDS", 60))

# Push (ntfy-style webhook)
PUSH_URL = os.getenv("PUSH_URL")
PUSH_TOKEN = os.getenv("PUSH_TOKEN")

# Email relay
EMAIL_API_URL = os.getenv("EMAIL_API_URL")
EMAIL_API_KEY = os.getenv("EMAIL_API_KEY")

# Twilio SMS
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_SMS_FROM = os.getenv("TWILIO_SMS_FROM")

# Calendar API used for meeting lookups
CALENDAR_API_URL = os.getenv("CALENDAR_API_URL")

# Geocoding (Nominatim-compatible)
GEOCODER_URL = os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org/search")
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "reminder-engine/1.0")

# Logging
LOG_DIR = Path(os.getenv("REMINDER_LOG_DIR", DATA_DIR / "logs"))
LOG_LEVEL = os.getenv("REMINDER_LOG_LEVEL", "INFO")
LOG_DIR.mkdir(parents=True, exist_ok=True)
