from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, NamedTuple

from pydantic import BaseModel, Field


class Mount(BaseModel):
    source: str
    destination: str


class ContainerDescriptor(BaseModel):
    """Snapshot of `docker inspect` for one container. Never cached."""

    id: str
    name: str
    running: bool = False
    tty: bool = False
    image: str = ""
    status: str = "unknown"
    mounts: List[Mount] = Field(default_factory=list)
    binds: List[str] = Field(default_factory=list)
    env: List[str] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)


class ConsoleFrame(NamedTuple):
    kind: Literal["stdout", "stderr"]
    payload: bytes


BackupType = Literal["server", "proxy", "database", "full"]


class BackupArtifact(BaseModel):
    filename: str
    type: BackupType
    name: str
    timestamp: str
    size: int = 0
    size_human: str = "0 Bytes"
    created_at: datetime


class RestorePhase(str, Enum):
    IDLE = "Idle"
    STOPPING = "Stopping"
    STAGING = "Staging"
    EXTRACTING = "Extracting"
    STARTING = "Starting"
    DONE = "Done"
    FAILED = "Failed"


class BackupOperation(BaseModel):
    container_id: str
    filename: str
    phase: RestorePhase = RestorePhase.IDLE
