import re
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from config import BACKUPS_ROOT
from archive_manager import ArchiveManager
from docker_manager import infer_container_type
from errors import (
    BridgeError,
    BackupError,
    BackupExists,
    BackupNotFound,
    InvalidBackupName,
    MountNotFound,
)
from models import BackupArtifact, BackupOperation
from restore_orchestrator import RestoreOrchestrator

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"

# {type}-{name}-{YYYY-MM-DD-HHMMSS}.tar.gz, e.g. server-mc-lobby-2026-02-13-143022.tar.gz
BACKUP_NAME_RE = re.compile(
    r"^(?P<type>server|proxy|database)-(?P<name>[A-Za-z0-9][A-Za-z0-9_.-]*)-"
    r"(?P<timestamp>\d{4}-\d{2}-\d{2}-\d{6})\.tar\.gz$"
)
FULL_BACKUP_RE = re.compile(r"^full-backup-(?P<timestamp>\d{4}-\d{2}-\d{2}-\d{6})\.tar\.gz$")
CONTAINER_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def parse_backup_filename(filename: str) -> dict:
    """Decode a canonical backup filename into ``{type, name, timestamp}``."""
    match = FULL_BACKUP_RE.match(filename)
    if match:
        return {"type": "full", "name": "backup", "timestamp": match.group("timestamp")}
    match = BACKUP_NAME_RE.match(filename)
    if not match:
        raise InvalidBackupName(f"Invalid backup filename: {filename!r}")
    return match.groupdict()


def format_backup_filename(backup_type: str, name: str = "", when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    stamp = when.strftime(TIMESTAMP_FORMAT)
    if backup_type == "full":
        return f"full-backup-{stamp}.tar.gz"
    if backup_type not in ("server", "proxy", "database"):
        raise InvalidBackupName(f"Unknown backup type {backup_type!r}")
    if not CONTAINER_NAME_RE.match(name):
        raise InvalidBackupName(f"Container name {name!r} cannot be used in a backup filename")
    return f"{backup_type}-{name}-{stamp}.tar.gz"


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


class BackupManager:
    """Backup surface: create, list, restore and delete tar.gz artifacts.

    The backup directory is the only record; every listing is read from it.
    """

    def __init__(self, engine, resolver, archives: Optional[ArchiveManager] = None,
                 backups_root: Path = BACKUPS_ROOT, orchestrator: Optional[RestoreOrchestrator] = None,
                 clock=None):
        self.engine = engine
        self.resolver = resolver
        self.archives = archives or ArchiveManager()
        self.backups_root = Path(backups_root)
        self.backups_root.mkdir(parents=True, exist_ok=True)
        self.orchestrator = orchestrator or RestoreOrchestrator(engine, resolver, self.archives)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _artifact(self, path: Path) -> BackupArtifact:
        info = parse_backup_filename(path.name)
        st = path.stat()
        return BackupArtifact(
            filename=path.name,
            type=info["type"],
            name=info["name"],
            timestamp=info["timestamp"],
            size=st.st_size,
            size_human=format_bytes(st.st_size),
            created_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    def _destination(self, filename: str) -> Path:
        dest = self.backups_root / filename
        if dest.exists():
            raise BackupExists(f"Backup {filename} already exists")
        return dest

    def list_backups(self) -> List[BackupArtifact]:
        items = []
        for p in self.backups_root.glob("*.tar.gz"):
            if not p.is_file():
                continue
            try:
                items.append(self._artifact(p))
            except InvalidBackupName:
                logger.debug(f"Ignoring foreign file in backup directory: {p.name}")
        return sorted(items, key=lambda a: (a.created_at, a.timestamp), reverse=True)

    def backup_path(self, filename: str) -> Path:
        parse_backup_filename(filename)
        path = self.backups_root / filename
        if not path.is_file():
            raise BackupNotFound(f"Backup {filename} not found")
        return path

    def create_backup(self, container_id: str) -> BackupArtifact:
        descriptor = self.engine.inspect(container_id)
        backup_type = infer_container_type(descriptor)
        source = self.resolver.data_root_for(descriptor)
        if not source.is_dir():
            raise MountNotFound(f"Data directory {source} does not exist", container_id=descriptor.id)
        filename = format_backup_filename(backup_type, descriptor.name, self._clock())
        dest = self._destination(filename)
        logger.info(f"Creating backup of {descriptor.name} from {source} to {dest}")
        self.archives.create(source, dest, profile=backup_type)
        artifact = self._artifact(dest)
        logger.info(f"Backup created successfully: {artifact.filename} ({artifact.size_human})")
        return artifact

    def create_many(self, container_ids: List[str]) -> Tuple[List[BackupArtifact], List[dict]]:
        """Back up several containers; failures are collected instead of aborting the batch."""
        created, errors = [], []
        for container_id in container_ids:
            try:
                created.append(self.create_backup(container_id))
            except BridgeError as e:
                logger.error(f"Backup of {container_id} failed: {e}")
                errors.append({"container_id": container_id, "error": e.message})
        return created, errors

    def create_full_backup(self) -> BackupArtifact:
        """One archive holding every managed container's data below its container name."""
        descriptors = self.engine.list_managed()
        if not descriptors:
            raise BackupError("No containers found to backup")
        filename = format_backup_filename("full", when=self._clock())
        dest = self._destination(filename)
        logger.info(f"Starting full backup of {len(descriptors)} containers")
        added = []
        with self.archives.writer(dest) as tar:
            for descriptor in descriptors:
                try:
                    source = self.resolver.data_root_for(descriptor)
                except MountNotFound as e:
                    logger.warning(f"Skipping {descriptor.name} in full backup: {e}")
                    continue
                if not source.is_dir():
                    logger.warning(f"Skipping {descriptor.name} in full backup: {source} missing")
                    continue
                logger.info(f"Adding {descriptor.name} to full backup")
                self.archives.add_tree(tar, source, arc_prefix=descriptor.name,
                                       profile=infer_container_type(descriptor))
                added.append(descriptor.name)
            if not added:
                raise BackupError("No container data could be added to backup")
        artifact = self._artifact(dest)
        logger.info(f"Full backup created: {artifact.filename} with {len(added)} containers ({artifact.size_human})")
        return artifact

    def restore_backup(self, filename: str, container_id: str) -> BackupOperation:
        info = parse_backup_filename(filename)
        archive = self.backup_path(filename)
        return self.orchestrator.restore(archive, info["type"], container_id)

    def delete_backup(self, filename: str) -> None:
        path = self.backup_path(filename)
        path.unlink()
        logger.info(f"Deleted backup: {filename}")
