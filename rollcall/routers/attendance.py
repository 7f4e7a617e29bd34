import logging

from fastapi import APIRouter, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from rollcall.config import OTP_WINDOW_MINUTES
from rollcall.services.events import ATTENDANCE_UPDATED, broadcaster
from database.db import (
    LecturerMarkDecision,
    StudentMarkDecision,
    mark_lecturer_attendance,
    mark_student_attendance,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


class StudentMark(BaseModel):
    lesson_id: int
    student_id: int
    otp: str


class LecturerMark(BaseModel):
    lesson_id: int
    otp: str


def _student_rejection(decision_code: StudentMarkDecision) -> HTTPException:
    mapping: dict[str, tuple[int, str]] = {
        "LESSON_NOT_FOUND": (404, "Lesson not found."),
        "LESSON_NOT_ACTIVE": (400, "Lesson is no longer active."),
        "OTP_DISABLED": (400, "OTP input is not yet enabled by the representative."),
        "OTP_EXPIRED": (400, f"OTP has expired ({OTP_WINDOW_MINUTES} minutes elapsed)."),
        "INVALID_OTP": (400, "Invalid OTP."),
        "ALREADY_PRESENT": (400, "Already marked present."),
    }
    status_code, detail = mapping[decision_code]
    return HTTPException(status_code=status_code, detail=detail)


def _lecturer_rejection(decision_code: LecturerMarkDecision) -> HTTPException:
    mapping: dict[str, tuple[int, str]] = {
        "LESSON_NOT_FOUND": (404, "Lesson not found."),
        "INVALID_OTP": (400, "Invalid lecturer OTP."),
        "ALREADY_PRESENT": (400, "Lecturer already marked present."),
    }
    status_code, detail = mapping[decision_code]
    return HTTPException(status_code=status_code, detail=detail)


@router.post("/attendance/mark")
async def mark_student(payload: StudentMark):
    result = await run_in_threadpool(
        mark_student_attendance, payload.lesson_id, payload.student_id, payload.otp
    )

    if result["decision_code"] != "PRESENT_SET":
        logger.info(
            "Rejected mark for student %s in lesson %s: %s",
            payload.student_id,
            payload.lesson_id,
            result["decision_code"],
        )
        if result["decision_code"] == "OTP_EXPIRED":
            await broadcaster.broadcast(ATTENDANCE_UPDATED, {"lesson_id": payload.lesson_id})
        raise _student_rejection(result["decision_code"])

    await broadcaster.broadcast(
        ATTENDANCE_UPDATED,
        {
            "lesson_id": payload.lesson_id,
            "student_id": payload.student_id,
            "status": "present",
        },
    )
    return {
        "ok": True,
        "lesson_id": result["lesson_id"],
        "student_id": result["student_id"],
        "status": result["status"],
        "marked_at": result["marked_at"],
    }


@router.post("/lecturer/mark")
async def mark_lecturer(payload: LecturerMark):
    decision = await run_in_threadpool(mark_lecturer_attendance, payload.lesson_id, payload.otp)
    if decision != "LECTURER_PRESENT_SET":
        logger.info("Rejected lecturer mark for lesson %s: %s", payload.lesson_id, decision)
        raise _lecturer_rejection(decision)

    await broadcaster.broadcast(ATTENDANCE_UPDATED, {"lesson_id": payload.lesson_id})
    return {"ok": True, "lesson_id": payload.lesson_id, "lecturer_present": True}
