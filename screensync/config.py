import os


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_optional_int(name: str) -> int | None:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


DATABASE_URL = os.getenv("SCREENSYNC_DATABASE_URL", "sqlite:///./screensync.db")

CONTROL_PLANE_URL = (os.getenv("SCREENSYNC_CONTROL_PLANE_URL", "https://app.yodeck.com/api/v2") or "").strip().rstrip("/")
CONTROL_PLANE_TOKEN = (os.getenv("SCREENSYNC_CONTROL_PLANE_TOKEN", "") or "").strip()
MAX_CONCURRENT_REQUESTS = int(os.getenv("SCREENSYNC_MAX_CONCURRENT_REQUESTS", "5"))
REQUEST_TIMEOUT_SEC = float(os.getenv("SCREENSYNC_REQUEST_TIMEOUT_SEC", "15"))
MAX_RETRIES = int(os.getenv("SCREENSYNC_MAX_RETRIES", "3"))
RETRY_BACKOFF_SEC = float(os.getenv("SCREENSYNC_RETRY_BACKOFF_SEC", "1.0"))
PAGE_SIZE = int(os.getenv("SCREENSYNC_PAGE_SIZE", "100"))

TEMPLATE_PLAYLIST_ID = _env_optional_int("SCREENSYNC_TEMPLATE_PLAYLIST_ID")
FILLER_MEDIA_ID = _env_optional_int("SCREENSYNC_FILLER_MEDIA_ID")
DEFAULT_ITEM_DURATION_SEC = int(os.getenv("SCREENSYNC_DEFAULT_ITEM_DURATION_SEC", "15"))
FILLER_DURATION_SEC = int(os.getenv("SCREENSYNC_FILLER_DURATION_SEC", "30"))
PUSH_SETTLE_SEC = float(os.getenv("SCREENSYNC_PUSH_SETTLE_SEC", "3"))
PLAYLIST_NAME_PREFIX = os.getenv("SCREENSYNC_PLAYLIST_NAME_PREFIX", "EVZ | SCREEN |").strip()

SWEEP_ENABLED = _env_flag("SCREENSYNC_SWEEP_ENABLED", "1")
SWEEP_INTERVAL_SEC = int(os.getenv("SCREENSYNC_SWEEP_INTERVAL_SEC", "300"))
QUIET_ACCESS_LOG = _env_flag("SCREENSYNC_QUIET_ACCESS_LOG", "1")
QUIET_WEBSOCKET_LOG = _env_flag("SCREENSYNC_QUIET_WEBSOCKET_LOG", "1")
