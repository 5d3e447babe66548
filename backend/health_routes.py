from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Optional
from datetime import datetime, timezone
import psutil
import sys
from docker.errors import DockerException
from requests.exceptions import RequestException

from config import APP_NAME, APP_VERSION, BACKUPS_ROOT, SERVERS_ROOT
from dependencies import get_docker_manager, get_backup_manager
from docker_manager import DockerManager
from errors import BridgeError
from backup_manager import BackupManager

router = APIRouter(prefix="/health", tags=["health"])


class StorageHealth(BaseModel):
    path: str
    disk_total_gb: float
    disk_used_gb: float
    disk_free_gb: float
    disk_used_percent: float
    error: Optional[str] = None


class DockerHealth(BaseModel):
    connected: bool
    version: Optional[str]
    managed_containers: int
    error: Optional[str]


class OverallHealth(BaseModel):
    status: str  # healthy, warning, error
    app: str
    version: str
    python_version: str
    timestamp: datetime
    docker: DockerHealth
    servers_storage: StorageHealth
    backups_storage: StorageHealth
    active_restores: int


def _storage(path) -> StorageHealth:
    try:
        disk = psutil.disk_usage(str(path))
    except OSError as e:
        return StorageHealth(path=str(path), disk_total_gb=0, disk_used_gb=0, disk_free_gb=0,
                             disk_used_percent=0, error=str(e))
    return StorageHealth(
        path=str(path),
        disk_total_gb=round(disk.total / (1024**3), 2),
        disk_used_gb=round(disk.used / (1024**3), 2),
        disk_free_gb=round(disk.free / (1024**3), 2),
        disk_used_percent=round(disk.percent, 2),
    )


@router.get("/docker", response_model=DockerHealth)
def get_docker_health(docker_manager: DockerManager = Depends(get_docker_manager)):
    """Docker daemon reachability and number of managed containers."""
    if not docker_manager.ping():
        return DockerHealth(connected=False, version=None, managed_containers=0, error="Docker daemon unreachable")
    try:
        version = docker_manager.client.version().get("Version", "Unknown")
        managed = len(docker_manager.list_managed())
    except (BridgeError, DockerException, RequestException) as e:
        return DockerHealth(connected=False, version=None, managed_containers=0, error=str(e))
    return DockerHealth(connected=True, version=version, managed_containers=managed, error=None)


@router.get("/storage/backups", response_model=StorageHealth)
def get_backup_storage():
    return _storage(BACKUPS_ROOT)


@router.get("", response_model=OverallHealth)
def get_overall_health(docker_manager: DockerManager = Depends(get_docker_manager),
                       backups: BackupManager = Depends(get_backup_manager)):
    docker_health = get_docker_health(docker_manager)
    servers_storage = _storage(SERVERS_ROOT)
    backups_storage = _storage(BACKUPS_ROOT)

    status = "healthy"
    if not docker_health.connected or servers_storage.error or backups_storage.error:
        status = "error"
    elif backups_storage.disk_used_percent > 90 or servers_storage.disk_used_percent > 90:
        status = "warning"

    return OverallHealth(
        status=status,
        app=APP_NAME,
        version=APP_VERSION,
        python_version=sys.version.split()[0],
        timestamp=datetime.now(timezone.utc),
        docker=docker_health,
        servers_storage=servers_storage,
        backups_storage=backups_storage,
        active_restores=len(backups.orchestrator.active_operations()),
    )
