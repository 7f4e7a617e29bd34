import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("ROLLCALL_DB_PATH", BASE_DIR / "database" / "attendance.db"))
CLIENT_DIST_DIR = Path(os.getenv("ROLLCALL_CLIENT_DIST_DIR", BASE_DIR / "dist"))

HOST = os.getenv("ROLLCALL_HOST", "0.0.0.0").strip() or "0.0.0.0"
PORT = int(os.getenv("ROLLCALL_PORT", "3000"))
LOG_LEVEL = os.getenv("ROLLCALL_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_positive_int(value: str | None, fallback: int) -> int:
    if not value:
        return fallback
    try:
        parsed = int(value.strip())
    except ValueError:
        return fallback
    return parsed if parsed > 0 else fallback


# any origin on the hotspot by default
CORS_ALLOW_ORIGINS = _parse_csv(os.getenv("ROLLCALL_CORS_ALLOW_ORIGINS"), ["*"])
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("ROLLCALL_ENABLE_DEBUG_ENDPOINTS"), False)

OTP_WINDOW_MINUTES = _parse_positive_int(os.getenv("ROLLCALL_OTP_WINDOW_MINUTES"), 20)
ACTIVE_LESSON_HOURS = _parse_positive_int(os.getenv("ROLLCALL_ACTIVE_LESSON_HOURS"), 24)
DEFAULT_DURATION_MINUTES = _parse_positive_int(os.getenv("ROLLCALL_DEFAULT_DURATION_MINUTES"), 60)
LICENSE_TRIAL_DAYS = _parse_positive_int(os.getenv("ROLLCALL_LICENSE_TRIAL_DAYS"), 30)
