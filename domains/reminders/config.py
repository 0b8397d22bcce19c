"""Reminder domain configuration - escalation, snooze and geofence tunables."""

# Escalation
ESCALATION_INTERVAL_MINUTES = 5   # Wait between levels before re-checking acknowledgement
ESCALATION_MAX_LEVEL = 3
REPEAT_INTERVAL_SECONDS = 5 * 60  # Level 3 asks the client to repeat this often

# Lifecycle
DEFAULT_SNOOZE_MINUTES = 15
DEFAULT_PRIORITY = "medium"

# Geofence
DEFAULT_RADIUS_METERS = 100
EARTH_RADIUS_METERS = 6371000

# Geocoder request timeout
GEOCODER_TIMEOUT = 10
