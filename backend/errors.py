"""Exceptions raised by the container data bridge.

Every error carries the container id, the restore phase (when one applies)
and the underlying cause so the API layer can report something actionable.
``status_code`` is the HTTP status app.py answers with.
"""

from typing import Optional


class BridgeError(Exception):
    status_code = 500

    def __init__(
        self,
        message: str,
        container_id: Optional[str] = None,
        phase: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.container_id = container_id
        self.phase = phase
        self.cause = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.container_id:
            parts.append(f"container={self.container_id}")
        if self.phase:
            parts.append(f"phase={self.phase}")
        if self.cause is not None:
            parts.append(f"cause={self.cause!r}")
        return " | ".join(parts)

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "container_id": self.container_id,
            "phase": self.phase,
            "cause": str(self.cause) if self.cause is not None else None,
        }


class TransportError(BridgeError):
    """Docker daemon unreachable or returned an unexpected API error."""
    status_code = 502


class ContainerNotFound(BridgeError):
    status_code = 404


class AttachError(BridgeError):
    status_code = 502


class StreamProtocolError(BridgeError):
    """Multiplexed stdio stream carried an unknown stream type."""
    status_code = 502


class MountNotFound(BridgeError):
    status_code = 404


class PathEscape(BridgeError):
    status_code = 400


class ArchiveWriteError(BridgeError):
    pass


class ArchiveReadError(BridgeError):
    status_code = 422


class BackupError(BridgeError):
    pass


class InvalidBackupName(BackupError):
    status_code = 400


class BackupNotFound(BackupError):
    status_code = 404


class BackupTypeMismatch(BackupError):
    status_code = 409


class RestoreInProgress(BackupError):
    status_code = 409


class EngineLifecycleError(BridgeError):
    """docker start/stop failed for a container."""
    status_code = 502


class BackupExists(BackupError):
    status_code = 409
