import logging
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from rollcall.config import (
    CLIENT_DIST_DIR,
    CORS_ALLOW_ORIGINS,
    DB_PATH,
    HOST,
    LOG_LEVEL,
    PORT,
)
from rollcall.routers import attendance, core, events, lessons, settings, students, units
from database.db import create_tables

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rollcall API")


# -----------------------------
# CORS (clients on the hotspot)
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_ORIGINS != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------
# Startup
# -----------------------------
@app.on_event("startup")
def _startup():
    create_tables()
    logger.info("Database ready at %s", DB_PATH)


app.include_router(core.router)
app.include_router(events.router)
app.include_router(students.router)
app.include_router(units.router)
app.include_router(lessons.router)
app.include_router(attendance.router)
app.include_router(settings.router)


# -----------------------------
# Built client (optional)
# -----------------------------
def mount_client(target: FastAPI, dist_dir: Path) -> bool:
    """
    Serve a built single-page client from dist_dir. Any non-API path that is
    not a file falls back to index.html so client-side routes resolve.
    """
    root = dist_dir.resolve()
    index_file = root / "index.html"
    if not index_file.is_file():
        logger.info("No client build at %s; serving API only", root)
        return False

    assets_dir = root / "assets"
    if assets_dir.is_dir():
        target.mount("/assets", StaticFiles(directory=assets_dir), name="assets")

    @target.get("/{full_path:path}", include_in_schema=False)
    def client(full_path: str):
        if full_path == "api" or full_path.startswith("api/"):
            raise HTTPException(status_code=404, detail="Not found.")
        candidate = (root / full_path).resolve()
        if full_path and root in candidate.parents and candidate.is_file():
            return FileResponse(candidate)
        return FileResponse(index_file)

    logger.info("Serving client build from %s", root)
    return True


mount_client(app, CLIENT_DIST_DIR)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=HOST, port=PORT)
