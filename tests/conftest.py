"""
Shared pytest fixtures for the bridge tests.

Provides an in-memory container engine double, fake attach streams and a
resolver wired to a temporary data root.
"""

import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

# config.py creates its directories at import time; keep them out of /data
_TMP_ROOT = Path(tempfile.mkdtemp(prefix="bridge-tests-"))
os.environ.setdefault("SERVERS_CONTAINER_ROOT", str(_TMP_ROOT / "servers"))
os.environ.setdefault("BACKUPS_ROOT", str(_TMP_ROOT / "backups"))
os.environ.setdefault("RESTORE_SETTLE_SECONDS", "0")

import pytest

from archive_manager import ArchiveManager
from backup_manager import BackupManager
from errors import AttachError, ContainerNotFound, EngineLifecycleError
from models import ContainerDescriptor, Mount
from path_resolver import PathResolver
from restore_orchestrator import RestoreOrchestrator

FIXED_NOW = datetime(2026, 2, 13, 14, 30, 22, tzinfo=timezone.utc)


class FakeStream:
    """Attach stream double. Serves ``chunks`` then EOF, or blocks until closed when ``hold_open``."""

    def __init__(self, chunks=(), hold_open=False):
        self.chunks = list(chunks)
        self.hold_open = hold_open
        self.written = []
        self.closed = False
        self.write_closed = False
        self._closed_event = threading.Event()

    def read(self, size=4096):
        if self.chunks:
            return self.chunks.pop(0)
        if self.hold_open:
            self._closed_event.wait(timeout=5)
        return b""

    def write(self, data):
        if self.closed:
            raise AttachError("closed")
        self.written.append(data)

    def close_write(self):
        self.write_closed = True

    def close(self):
        self.closed = True
        self._closed_event.set()


class FakeEngine:
    """In-memory stand-in for DockerManager."""

    def __init__(self):
        self.containers = {}
        self.streams = {}
        self.calls = []
        self.attach_kwargs = []
        self.fail_stop = None
        self.fail_start = None
        self.fail_attach = None

    def add(self, descriptor: ContainerDescriptor) -> ContainerDescriptor:
        self.containers[descriptor.id] = descriptor
        return descriptor

    def _find(self, container_id):
        for d in self.containers.values():
            if container_id in (d.id, d.name):
                return d
        raise ContainerNotFound(f"Container {container_id} not found", container_id=container_id)

    def inspect(self, container_id):
        self.calls.append(("inspect", container_id))
        return self._find(container_id).model_copy(deep=True)

    def attach(self, container_id, **kwargs):
        self.calls.append(("attach", container_id))
        self.attach_kwargs.append(kwargs)
        if self.fail_attach:
            raise self.fail_attach
        return self.streams[self._find(container_id).id]

    def stop(self, container_id):
        self.calls.append(("stop", container_id))
        if self.fail_stop:
            raise self.fail_stop
        self._find(container_id).running = False

    def start(self, container_id):
        self.calls.append(("start", container_id))
        if self.fail_start:
            raise self.fail_start
        self._find(container_id).running = True

    def list_managed(self):
        return [d.model_copy(deep=True) for d in self.containers.values()]

    def call_names(self):
        return [name for name, _ in self.calls]


def make_descriptor(cid, name, source=None, destination="/data", running=True, tty=False,
                    binds=None, labels=None):
    mounts = [Mount(source=str(source), destination=destination)] if source is not None else []
    return ContainerDescriptor(
        id=cid,
        name=name,
        running=running,
        tty=tty,
        mounts=mounts,
        binds=binds or [],
        labels=labels or {},
    )


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def data_root(tmp_path):
    root = tmp_path / "servers"
    root.mkdir()
    return root


@pytest.fixture
def resolver(engine, data_root):
    return PathResolver(engine, data_root=data_root, host_root="", separate_fs=False, case_insensitive=False)


@pytest.fixture
def server_container(engine, data_root):
    server_dir = data_root / "mc-lobby"
    (server_dir / "world").mkdir(parents=True)
    (server_dir / "server.properties").write_text("motd=Lobby\n")
    (server_dir / "world" / "level.dat").write_bytes(b"\x00\x01level")
    (server_dir / "logs").mkdir()
    (server_dir / "logs" / "latest.log").write_text("old log\n")
    return engine.add(make_descriptor("c-lobby", "mc-lobby", server_dir, "/data"))


@pytest.fixture
def proxy_container(engine, data_root):
    proxy_dir = data_root / "proxy-hub"
    proxy_dir.mkdir()
    (proxy_dir / "velocity.toml").write_text('bind = "0.0.0.0:25577"\n')
    return engine.add(make_descriptor(
        "c-hub", "proxy-hub", proxy_dir, "/server", labels={"server_type": "velocity-proxy"}
    ))


@pytest.fixture
def backups_root(tmp_path):
    root = tmp_path / "backups"
    root.mkdir()
    return root


@pytest.fixture
def backup_manager(engine, resolver, backups_root):
    archives = ArchiveManager()
    orchestrator = RestoreOrchestrator(engine, resolver, archives, settle_seconds=0)
    return BackupManager(engine, resolver, archives, backups_root=backups_root,
                         orchestrator=orchestrator, clock=lambda: FIXED_NOW)
