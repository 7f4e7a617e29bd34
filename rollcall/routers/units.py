from fastapi import APIRouter, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from rollcall.services.events import ATTENDANCE_UPDATED, broadcaster
from database.db import (
    add_unit,
    delete_unit,
    get_all_units,
    update_unit,
)

router = APIRouter(prefix="/api")


class UnitPayload(BaseModel):
    name: str
    lecturer: str


def _clean(payload: UnitPayload) -> tuple[str, str]:
    name = payload.name.strip()
    lecturer = payload.lecturer.strip()
    if not name or not lecturer:
        raise HTTPException(status_code=400, detail="Unit name and lecturer are required.")
    return name, lecturer


@router.get("/units")
def units():
    rows = get_all_units()
    return [
        {
            "id": r[0],
            "name": r[1],
            "lecturer": r[2],
        }
        for r in rows
    ]


@router.post("/units")
async def create_unit(payload: UnitPayload):
    name, lecturer = _clean(payload)
    new_id = await run_in_threadpool(add_unit, name, lecturer)

    await broadcaster.broadcast(ATTENDANCE_UPDATED, {"unit_id": new_id})
    return {"id": new_id, "name": name, "lecturer": lecturer}


@router.put("/units/{unit_id}")
async def edit_unit(unit_id: int, payload: UnitPayload):
    name, lecturer = _clean(payload)
    if not await run_in_threadpool(update_unit, unit_id, name, lecturer):
        raise HTTPException(status_code=404, detail="Unit not found.")

    await broadcaster.broadcast(ATTENDANCE_UPDATED, {"unit_id": unit_id})
    return {"id": unit_id, "name": name, "lecturer": lecturer}


@router.delete("/units/{unit_id}")
async def remove_unit(unit_id: int):
    stats = await run_in_threadpool(delete_unit, unit_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="Unit not found.")

    await broadcaster.broadcast(ATTENDANCE_UPDATED, {"unit_id": unit_id})
    return {"ok": True, **stats}
