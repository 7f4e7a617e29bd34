from fastapi import APIRouter
from pydantic import BaseModel

from database.db import REP_NAME_KEY, get_license_status, get_setting, set_setting

router = APIRouter(prefix="/api")


class RepName(BaseModel):
    name: str


@router.get("/settings/rep-name")
def rep_name():
    return {"name": get_setting(REP_NAME_KEY) or ""}


@router.post("/settings/rep-name")
def save_rep_name(payload: RepName):
    name = payload.name.strip()
    set_setting(REP_NAME_KEY, name)
    return {"ok": True, "name": name}


@router.get("/license/status")
def license_status():
    return get_license_status()
