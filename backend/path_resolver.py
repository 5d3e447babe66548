import os
import re
import logging
from pathlib import Path
from typing import Iterable, Optional, Tuple

from config import SERVERS_ROOT, SERVERS_HOST_ROOT, BRIDGE_IN_CONTAINER, CASE_INSENSITIVE_FS
from errors import MountNotFound, PathEscape
from models import ContainerDescriptor

logger = logging.getLogger(__name__)

# Container-side data roots: game servers (itzg/minecraft-server), proxies (itzg/bungeecord)
# and the database sidecars.
DATA_ROOT_DESTINATIONS = ("/data", "/server", "/var/lib/postgresql/data", "/var/lib/mysql")

_WINDOWS_PATH = re.compile(r"^[A-Za-z]:|\\")


def parse_bind(spec: str, destinations: Iterable[str] = DATA_ROOT_DESTINATIONS) -> Optional[Tuple[str, str]]:
    """Split a bind spec ``hostPath:containerPath[:mode]`` on its destination segment.

    The host path may itself contain colons (``C:\\srv\\mc-a:/data:rw``), so the
    spec is split on every colon and the destination located by value.
    Returns ``(host_path, destination)`` or None when no destination matches.
    """
    wanted = {d.rstrip("/") or "/" for d in destinations}
    parts = spec.split(":")
    for idx in range(1, len(parts)):
        segment = parts[idx].rstrip("/") or "/"
        if segment in wanted:
            host = ":".join(parts[:idx])
            if host:
                return host, segment
    return None


def find_data_source(descriptor: ContainerDescriptor, destinations: Iterable[str] = DATA_ROOT_DESTINATIONS) -> Optional[str]:
    """Host-side source of the container's data volume, mounts first then binds."""
    destinations = tuple(destinations)
    wanted = {d.rstrip("/") or "/" for d in destinations}
    for mount in descriptor.mounts:
        if (mount.destination.rstrip("/") or "/") in wanted:
            return mount.source
    for spec in descriptor.binds:
        parsed = parse_bind(spec, destinations)
        if parsed:
            return parsed[0]
    return None


class PathResolver:
    """Maps paths inside a container's data volume onto the bridge's filesystem.

    Stateless: every call inspects the container again, so a recreated
    container with different mounts is never resolved against stale data.
    """

    def __init__(self, engine, data_root: Path = SERVERS_ROOT, host_root: str = SERVERS_HOST_ROOT,
                 separate_fs: bool = BRIDGE_IN_CONTAINER, case_insensitive: bool = CASE_INSENSITIVE_FS,
                 destinations: Iterable[str] = DATA_ROOT_DESTINATIONS):
        self.engine = engine
        self.bridge_root = Path(data_root)
        self.host_root = host_root or ""
        self.separate_fs = separate_fs
        self.case_insensitive = case_insensitive
        self.destinations = tuple(destinations)

    def resolve(self, container_id: str, relative_path: str = ".") -> Path:
        descriptor = self.engine.inspect(container_id)
        root = self.data_root_for(descriptor)
        return self.join(root, relative_path, container_id=descriptor.id or container_id)

    def data_root(self, container_id: str) -> Path:
        return self.data_root_for(self.engine.inspect(container_id))

    def data_root_for(self, descriptor: ContainerDescriptor) -> Path:
        """Canonical bridge-local root of the descriptor's data volume."""
        host_path = find_data_source(descriptor, self.destinations)
        if not host_path:
            logger.error(
                f"No data mount for {descriptor.name}: mounts={[m.destination for m in descriptor.mounts]} binds={descriptor.binds}"
            )
            raise MountNotFound(
                f"Container has no {' or '.join(self.destinations)} volume mount",
                container_id=descriptor.id,
            )
        return self.to_bridge_path(host_path, container_id=descriptor.id).resolve()

    def to_bridge_path(self, host_path: str, container_id: Optional[str] = None) -> Path:
        """Translate a path on the Docker host into one valid on this filesystem."""
        foreign = os.name != "nt" and bool(_WINDOWS_PATH.search(host_path))
        if self.separate_fs or foreign:
            leaf = host_path.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
            if leaf in ("", ".", ".."):
                raise MountNotFound(f"Cannot map host path {host_path!r} onto {self.bridge_root}", container_id=container_id)
            mapped = self.bridge_root / leaf
            logger.debug(f"Mapped foreign host path {host_path!r} to {mapped}")
            return mapped

        if self.host_root:
            norm_path = host_path.replace("\\", "/")
            norm_root = self.host_root.replace("\\", "/").rstrip("/")
            fold = self.case_insensitive or bool(_WINDOWS_PATH.search(self.host_root))
            cmp_path = norm_path.lower() if fold else norm_path
            cmp_root = norm_root.lower() if fold else norm_root
            if cmp_path == cmp_root or cmp_path.startswith(cmp_root + "/"):
                remainder = norm_path[len(norm_root):].lstrip("/")
                mapped = self.bridge_root / remainder if remainder else self.bridge_root
                logger.debug(f"Mapped host path {host_path!r} to {mapped}")
                return mapped

        return Path(host_path)

    def join(self, root: Path, relative_path: str, container_id: Optional[str] = None) -> Path:
        """Resolve ``root/relative_path`` and refuse anything outside root."""
        root = Path(root).resolve()
        target = (root / (relative_path or ".")).resolve()
        if not self.is_within(target, root):
            logger.warning(f"Rejected path {relative_path!r} for {container_id}: {target} is outside {root}")
            raise PathEscape(
                f"Access denied: path is outside the server directory ({relative_path})",
                container_id=container_id,
            )
        return target

    def is_within(self, target: Path, root: Path) -> bool:
        t, r = str(target), str(root)
        if self.case_insensitive:
            t, r = t.casefold(), r.casefold()
        if t == r:
            return True
        return t.startswith(r.rstrip(os.sep) + os.sep)
