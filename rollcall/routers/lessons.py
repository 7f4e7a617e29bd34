import logging

from fastapi import APIRouter, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from rollcall.services.events import ATTENDANCE_UPDATED, OTP_ENABLED, broadcaster
from database.db import (
    enable_lesson_otp,
    get_active_lesson,
    get_unit_by_id,
    restart_active_lesson,
    start_lesson,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


class LessonStart(BaseModel):
    unit_id: int | None = None
    venue: str = ""
    duration: int | None = None
    scheduled_start: str | None = None
    scheduled_end: str | None = None


@router.post("/lessons/start")
async def start(payload: LessonStart):
    logger.info("Starting lesson with config: %s", payload.model_dump())
    if not payload.unit_id:
        raise HTTPException(status_code=400, detail="Unit ID is required.")

    venue = payload.venue.strip()
    if not venue:
        raise HTTPException(status_code=400, detail="Venue is required.")

    if not await run_in_threadpool(get_unit_by_id, payload.unit_id):
        raise HTTPException(status_code=404, detail="Unit not found.")

    lesson_id = await run_in_threadpool(
        start_lesson,
        payload.unit_id,
        venue,
        payload.duration,
        payload.scheduled_start,
        payload.scheduled_end,
    )

    await broadcaster.broadcast(ATTENDANCE_UPDATED, {"lesson_id": lesson_id})
    return {"ok": True, "lesson_id": lesson_id}


@router.post("/lessons/restart")
async def restart():
    lesson_id = await run_in_threadpool(restart_active_lesson)
    if lesson_id is None:
        raise HTTPException(status_code=404, detail="No active lesson to restart.")

    await broadcaster.broadcast(ATTENDANCE_UPDATED, {"lesson_id": lesson_id})
    return {"ok": True, "lesson_id": lesson_id}


@router.post("/lessons/{lesson_id}/enable-otp")
async def enable_otp(lesson_id: int):
    if not await run_in_threadpool(enable_lesson_otp, lesson_id):
        raise HTTPException(status_code=404, detail="Lesson not found.")

    await broadcaster.broadcast(OTP_ENABLED, {"lesson_id": lesson_id})
    return {"ok": True, "lesson_id": lesson_id}


@router.get("/lessons/active")
def active_lesson():
    # Reading the active lesson also closes out pending rows past the OTP window.
    return get_active_lesson()
