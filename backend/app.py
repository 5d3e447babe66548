from fastapi import FastAPI, Depends, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel
from typing import List, Union
import os
import logging

from config import APP_NAME, APP_VERSION, LOG_LEVEL
from console_session import ConsoleSession
from dependencies import get_docker_manager, get_file_manager, get_backup_manager
from docker_manager import DockerManager
from errors import BridgeError
from file_manager import FileManager
from backup_manager import BackupManager
from health_routes import router as health_router

logger = logging.getLogger(__name__)

app = FastAPI(title=APP_NAME, version=APP_VERSION)

# ---- CORS Configuration ----

_origins_env = os.getenv("ALLOWED_ORIGINS", "*")
if _origins_env.strip() == "*":
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in _origins_env.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

app.include_router(health_router, prefix="/api")


@app.on_event("startup")
async def startup_event():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.info(f"{APP_NAME} {APP_VERSION} starting")


@app.exception_handler(BridgeError)
async def bridge_error_handler(request: Request, exc: BridgeError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


class FileWrite(BaseModel):
    path: str
    content: str


class BackupCreateRequest(BaseModel):
    targets: Union[str, List[str]] = "all"


# ---- File manager ----

@app.get("/servers/{container_id}/files")
@app.get("/api/servers/{container_id}/files")
def files_list(container_id: str, path: str = ".", files: FileManager = Depends(get_file_manager)):
    logger.info(f"List files for {container_id} at path: {path}")
    return files.list_dir(container_id, path)


@app.get("/servers/{container_id}/files/content")
@app.get("/api/servers/{container_id}/files/content")
def file_read(container_id: str, path: str = Query(...), files: FileManager = Depends(get_file_manager)):
    return {"content": files.read_file(container_id, path)}


@app.post("/servers/{container_id}/files/content")
@app.post("/api/servers/{container_id}/files/content")
def file_write(container_id: str, body: FileWrite, files: FileManager = Depends(get_file_manager)):
    files.write_file(container_id, body.path, body.content)
    return {"ok": True}


@app.delete("/servers/{container_id}/files")
@app.delete("/api/servers/{container_id}/files")
def file_delete(container_id: str, path: str = Query(...), files: FileManager = Depends(get_file_manager)):
    files.delete_path(container_id, path)
    return {"ok": True}


# ---- Backups ----
# Plain `def` handlers: Starlette runs them in its worker pool, so archiving
# never blocks the event loop serving other requests.

@app.post("/api/backups/create")
def backups_create(body: BackupCreateRequest, backups: BackupManager = Depends(get_backup_manager)):
    targets = [body.targets] if isinstance(body.targets, str) else list(body.targets)
    if not targets or "all" in targets:
        logger.info("Creating full backup...")
        artifact = backups.create_full_backup()
        return {"success": True, "backup": artifact, "message": f"Full backup {artifact.filename} created"}

    logger.info(f"Creating backups for {len(targets)} containers...")
    created, errors = backups.create_many(targets)
    message = f"Created {len(created)} backup(s)"
    if errors:
        message += f", {len(errors)} failed"
    return {"success": len(created) > 0, "backups": created, "errors": errors, "message": message}


@app.get("/api/backups")
def backups_list(backups: BackupManager = Depends(get_backup_manager)):
    items = backups.list_backups()
    return {"backups": items, "count": len(items)}


@app.get("/api/backups/restores")
def backups_active_restores(backups: BackupManager = Depends(get_backup_manager)):
    return {"restores": backups.orchestrator.active_operations()}


@app.get("/api/backups/{filename}/download")
def backups_download(filename: str, backups: BackupManager = Depends(get_backup_manager)):
    path = backups.backup_path(filename)
    logger.info(f"Downloading backup: {filename}")
    return FileResponse(str(path), filename=filename, media_type="application/gzip")


@app.post("/api/backups/{filename}/restore/{container_id}")
def backups_restore(filename: str, container_id: str, backups: BackupManager = Depends(get_backup_manager)):
    logger.info(f"Restoring backup {filename} to container {container_id}...")
    operation = backups.restore_backup(filename, container_id)
    return {"success": True, "operation": operation, "message": "Backup restored successfully"}


@app.delete("/api/backups/{filename}")
def backups_delete(filename: str, backups: BackupManager = Depends(get_backup_manager)):
    backups.delete_backup(filename)
    return {"success": True, "message": "Backup deleted successfully"}


# ---- Console ----

@app.websocket("/ws/console/{container_id}")
async def console_socket(websocket: WebSocket, container_id: str,
                         engine: DockerManager = Depends(get_docker_manager)):
    """Live console: inbound text goes to stdin, container output comes back as text."""
    await websocket.accept()
    session = ConsoleSession(engine, container_id, websocket.send_text)
    logger.info(f"Console client joined {container_id}")
    try:
        await session.open()
        while True:
            data = await websocket.receive_text()
            await session.send(data)
    except WebSocketDisconnect:
        logger.info(f"Console client for {container_id} disconnected")
    finally:
        await session.close()
