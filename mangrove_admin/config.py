import os
from typing import List, Optional


def _get_env_float(key: str, default: float) -> float:
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default

def _get_env_int(key: str, default: int) -> int:
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default

def _get_env_list(key: str, default: str) -> List[str]:
    return [item.strip() for item in os.environ.get(key, default).split(",") if item.strip()]


# --- Remote API ---
API_BASE_URL = os.environ.get("MANGROVE_API_BASE_URL", "https://manishkumardev.me/mangrove").rstrip("/")
REQUEST_TIMEOUT = _get_env_float("MANGROVE_REQUEST_TIMEOUT", 10.0)
PLACEHOLDER_IMAGE_URL = os.environ.get(
    "MANGROVE_PLACEHOLDER_IMAGE",
    "https://via.placeholder.com/300x200/22c55e/ffffff?text=Report+Image",
)

# --- Session ---
SESSION_MAX_AGE_HOURS = _get_env_float("MANGROVE_SESSION_MAX_AGE_HOURS", 24.0)
SESSION_CHECK_SECONDS = _get_env_int("MANGROVE_SESSION_CHECK_SECONDS", 300)
SESSION_FILE: Optional[str] = os.environ.get("MANGROVE_SESSION_FILE") or None

# --- HTTP surface ---
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
CORS_ALLOW_ORIGINS = _get_env_list("CORS_ALLOW_ORIGINS", "*")
VERSION = "1.0.0"
SESSION_COOKIE = os.environ.get("MANGROVE_SESSION_COOKIE", "mangrove_console")
COOKIE_SECURE = _get_env_int("MANGROVE_COOKIE_SECURE", 0) == 1
