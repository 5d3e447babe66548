import shutil
import time
import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List

from config import RESTORE_SETTLE_SECONDS
from docker_manager import infer_container_type
from errors import BridgeError, BackupError, BackupTypeMismatch, RestoreInProgress, ArchiveReadError
from models import BackupOperation, RestorePhase

logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".pre-restore"
INCOMING_SUFFIX = ".restoring"


def staging_dir_for(data_dir: Path) -> Path:
    return data_dir.with_name(data_dir.name + STAGING_SUFFIX)


def incoming_dir_for(data_dir: Path) -> Path:
    return data_dir.with_name(data_dir.name + INCOMING_SUFFIX)


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


class RestoreOrchestrator:
    """Runs stop -> stage -> extract -> start for one container at a time.

    Restores of different containers run concurrently; a second restore of
    the same container is refused while one is active. Once Stopping has
    begun the sequence always ends in Done or Failed. The archive is
    extracted into ``<dir>.restoring`` and only moved into place once
    complete. On failure the previous data stays parked in
    ``<dir>.pre-restore``, the data directory stays empty and the
    container stays stopped for manual recovery.
    """

    def __init__(self, engine, resolver, archives,
                 settle_seconds: float = RESTORE_SETTLE_SECONDS,
                 sleep: Callable[[float], None] = time.sleep):
        self.engine = engine
        self.resolver = resolver
        self.archives = archives
        self.settle_seconds = settle_seconds
        self._sleep = sleep
        # Active restores by container id; an entry is the claim on that container
        self._registry_lock = threading.Lock()
        self._operations: Dict[str, BackupOperation] = {}

    def active_operations(self) -> List[BackupOperation]:
        with self._registry_lock:
            return [op.model_copy() for op in self._operations.values()]

    def restore(self, archive_file: Path, backup_type: str, container_id: str) -> BackupOperation:
        archive_file = Path(archive_file)
        descriptor = self.engine.inspect(container_id)
        key = descriptor.id or container_id

        container_type = infer_container_type(descriptor)
        if backup_type != "full" and backup_type != container_type:
            raise BackupTypeMismatch(
                f"Backup type mismatch: backup is for {backup_type}, container is {container_type}",
                container_id=key,
                phase=RestorePhase.IDLE.value,
            )
        data_dir = self.resolver.data_root_for(descriptor)

        op = BackupOperation(container_id=key, filename=archive_file.name)
        with self._registry_lock:
            if key in self._operations:
                raise RestoreInProgress(
                    f"A restore is already running for {descriptor.name}",
                    container_id=key,
                )
            self._operations[key] = op
        try:
            logger.info(f"Restoring {archive_file.name} to {descriptor.name} ({data_dir})")
            subdir = descriptor.name if backup_type == "full" else None
            self._run(op, archive_file, data_dir, subdir)
        finally:
            with self._registry_lock:
                self._operations.pop(key, None)
        return op

    def _run(self, op: BackupOperation, archive_file: Path, data_dir: Path, subdir) -> None:
        try:
            op.phase = RestorePhase.STOPPING
            logger.info(f"Stopping container {op.container_id}...")
            self.engine.stop(op.container_id)

            op.phase = RestorePhase.STAGING
            self._sleep(self.settle_seconds)
            staging = self._stage(data_dir)
            logger.info(f"Existing data parked in {staging}")

            op.phase = RestorePhase.EXTRACTING
            self._extract(archive_file, data_dir, subdir)

            op.phase = RestorePhase.STARTING
            logger.info(f"Starting container {op.container_id}...")
            self.engine.start(op.container_id)

            op.phase = RestorePhase.DONE
            logger.info(f"Restore completed successfully for {op.container_id}")
        except BridgeError as e:
            failed_at = op.phase
            op.phase = RestorePhase.FAILED
            e.container_id = e.container_id or op.container_id
            e.phase = e.phase or failed_at.value
            logger.error(f"Restore of {archive_file.name} failed during {failed_at.value}: {e}")
            raise
        except OSError as e:
            failed_at = op.phase
            op.phase = RestorePhase.FAILED
            logger.error(f"Restore of {archive_file.name} failed during {failed_at.value}: {e}")
            raise BackupError(
                f"Restore failed during {failed_at.value}",
                container_id=op.container_id,
                phase=failed_at.value,
                cause=e,
            ) from e

    def _stage(self, data_dir: Path) -> Path:
        staging = staging_dir_for(data_dir)
        _remove(staging)
        if data_dir.exists():
            data_dir.rename(staging)
        data_dir.mkdir(parents=True, exist_ok=True)
        return staging

    def _extract(self, archive_file: Path, data_dir: Path, subdir) -> None:
        incoming = incoming_dir_for(data_dir)
        _remove(incoming)
        incoming.mkdir(parents=True)
        try:
            count = self.archives.extract(archive_file, incoming, subdir_filter=subdir)
            if subdir and count == 0:
                raise ArchiveReadError(f"Archive {archive_file.name} holds no data for {subdir}")
        except BaseException:
            _remove(incoming)
            raise
        # Swap the complete tree in for the empty directory left by staging
        data_dir.rmdir()
        incoming.rename(data_dir)
