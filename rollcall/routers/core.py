from fastapi import APIRouter, HTTPException

from rollcall.config import (
    ACTIVE_LESSON_HOURS,
    DB_PATH,
    DEFAULT_DURATION_MINUTES,
    ENABLE_DEBUG_ENDPOINTS,
    OTP_WINDOW_MINUTES,
)

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath():
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(DB_PATH)}


@router.get("/config/session")
def session_config():
    return {
        "otp_window_minutes": OTP_WINDOW_MINUTES,
        "active_lesson_hours": ACTIVE_LESSON_HOURS,
        "default_duration_minutes": DEFAULT_DURATION_MINUTES,
    }
