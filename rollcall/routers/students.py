import sqlite3

from fastapi import APIRouter, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from rollcall.services.events import ATTENDANCE_UPDATED, broadcaster
from database.db import (
    add_student,
    delete_student,
    get_all_students,
    get_student_by_id,
    update_student,
)

router = APIRouter(prefix="/api")


class StudentPayload(BaseModel):
    name: str
    admission_number: str


def _clean(payload: StudentPayload) -> tuple[str, str]:
    name = payload.name.strip()
    admission_number = payload.admission_number.strip()
    if not name or not admission_number:
        raise HTTPException(status_code=400, detail="Name and admission number are required.")
    return name, admission_number


@router.get("/students")
def students():
    rows = get_all_students()
    return [
        {
            "id": r[0],
            "name": r[1],
            "admission_number": r[2],
        }
        for r in rows
    ]


@router.get("/students/{student_id}")
def student_detail(student_id: int):
    row = get_student_by_id(student_id)
    if not row:
        raise HTTPException(status_code=404, detail="Student not found.")
    return {"id": row[0], "name": row[1], "admission_number": row[2]}


@router.post("/students")
async def create_student(payload: StudentPayload):
    name, admission_number = _clean(payload)

    try:
        enrollment = await run_in_threadpool(add_student, name, admission_number)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Admission number already exists.")

    event = {"student_id": enrollment["id"]}
    if enrollment["lesson_id"] is not None:
        event["lesson_id"] = enrollment["lesson_id"]
    await broadcaster.broadcast(ATTENDANCE_UPDATED, event)

    return {
        "id": enrollment["id"],
        "name": name,
        "admission_number": admission_number,
        "lesson_id": enrollment["lesson_id"],
        "attendance_status": enrollment["attendance_status"],
    }


@router.put("/students/{student_id}")
async def edit_student(student_id: int, payload: StudentPayload):
    name, admission_number = _clean(payload)

    try:
        ok = await run_in_threadpool(update_student, student_id, name, admission_number)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Admission number already exists.")
    if not ok:
        raise HTTPException(status_code=404, detail="Student not found.")

    await broadcaster.broadcast(ATTENDANCE_UPDATED, {"student_id": student_id})
    return {"id": student_id, "name": name, "admission_number": admission_number}


@router.delete("/students/{student_id}")
async def remove_student(student_id: int):
    ok = await run_in_threadpool(delete_student, student_id)
    if not ok:
        raise HTTPException(status_code=404, detail="Student not found.")

    await broadcaster.broadcast(ATTENDANCE_UPDATED, {"student_id": student_id})
    return {"ok": True}
