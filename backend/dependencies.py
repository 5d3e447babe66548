"""Process-wide bridge components, built lazily on first use.

Routes receive them through ``Depends`` so tests can swap any of them via
``app.dependency_overrides``. Every component gets the engine client passed
in explicitly.
"""

from archive_manager import ArchiveManager
from backup_manager import BackupManager
from docker_manager import DockerManager
from file_manager import FileManager
from path_resolver import PathResolver

_docker_manager: DockerManager | None = None
_backup_manager: BackupManager | None = None


def get_docker_manager() -> DockerManager:
    global _docker_manager
    if _docker_manager is None:
        _docker_manager = DockerManager()
    return _docker_manager


def get_path_resolver() -> PathResolver:
    # Stateless, cheap to build per request
    return PathResolver(get_docker_manager())


def get_file_manager() -> FileManager:
    return FileManager(get_path_resolver())


def get_backup_manager() -> BackupManager:
    # Shared so the per-container restore locks are process-wide
    global _backup_manager
    if _backup_manager is None:
        engine = get_docker_manager()
        _backup_manager = BackupManager(engine, PathResolver(engine), ArchiveManager())
    return _backup_manager
