import os

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")

PAIRING_TIMEZONE = os.getenv("PAIRING_TIMEZONE", "America/Los_Angeles")
PAIRING_EXPIRY_HOUR = int(os.getenv("PAIRING_EXPIRY_HOUR", "22"))
FALLBACK_EXPIRY_HOUR = int(os.getenv("FALLBACK_EXPIRY_HOUR", "23"))
HISTORY_LOOKBACK_DAYS = int(os.getenv("HISTORY_LOOKBACK_DAYS", "7"))
ACTIVE_WITHIN_DAYS = int(os.getenv("ACTIVE_WITHIN_DAYS", "3"))
MAX_FLAKE_STREAK = int(os.getenv("MAX_FLAKE_STREAK", "5"))

_seed = os.getenv("MATCH_SHUFFLE_SEED", "").strip()
MATCH_SHUFFLE_SEED = int(_seed) if _seed else None

PLACEHOLDER_USERNAME_PREFIX = os.getenv("PLACEHOLDER_USERNAME_PREFIX", "test_")
PLACEHOLDER_EMAIL_DOMAIN = os.getenv("PLACEHOLDER_EMAIL_DOMAIN", "@testuser.dailymeetup.local")
PLACEHOLDER_MAX_ATTEMPTS = int(os.getenv("PLACEHOLDER_MAX_ATTEMPTS", "5"))
PLACEHOLDER_PHOTO_URL = os.getenv("PLACEHOLDER_PHOTO_URL", "")

MEETING_LINK_BASE = os.getenv("MEETING_LINK_BASE", "https://meet.jitsi.si/DailyMeetupSelfie-")

DEFAULT_QUIET_HOURS_START = int(os.getenv("DEFAULT_QUIET_HOURS_START", "22"))
DEFAULT_QUIET_HOURS_END = int(os.getenv("DEFAULT_QUIET_HOURS_END", "8"))
NOTIFICATION_BATCH_SIZE = int(os.getenv("NOTIFICATION_BATCH_SIZE", "500"))
