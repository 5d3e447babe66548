import os
import socket
import logging
from typing import Optional, List

import docker
from docker.errors import DockerException, NotFound, APIError
from requests.exceptions import RequestException

from config import MANAGED_LABEL_KEY, MANAGED_LABEL_VALUE
from errors import TransportError, ContainerNotFound, AttachError, EngineLifecycleError
from models import ContainerDescriptor, Mount

logger = logging.getLogger(__name__)

MANAGED_NAME_PREFIXES = ("mc-", "proxy-", "db-")


def descriptor_from_attrs(attrs: dict) -> ContainerDescriptor:
    """Build a ContainerDescriptor from the raw `docker inspect` payload."""
    config = attrs.get("Config", {}) or {}
    state = attrs.get("State", {}) or {}
    host_config = attrs.get("HostConfig", {}) or {}
    mounts = []
    for m in attrs.get("Mounts", []) or []:
        source = m.get("Source")
        destination = m.get("Destination")
        if source and destination:
            mounts.append(Mount(source=source, destination=destination))
    return ContainerDescriptor(
        id=attrs.get("Id", ""),
        name=(attrs.get("Name") or "").lstrip("/"),
        running=bool(state.get("Running", False)),
        tty=bool(config.get("Tty", False)),
        image=config.get("Image") or "",
        status=state.get("Status") or "unknown",
        mounts=mounts,
        binds=list(host_config.get("Binds") or []),
        env=list(config.get("Env") or []),
        labels=dict(config.get("Labels") or {}),
    )


def infer_container_type(descriptor: ContainerDescriptor) -> str:
    """Role of a managed container: 'server', 'proxy' or 'database'."""
    label = (descriptor.labels.get("server_type") or "").lower()
    if label == "database":
        return "database"
    if label.endswith("proxy"):
        return "proxy"
    if descriptor.name.startswith("proxy-"):
        return "proxy"
    if descriptor.name.startswith("db-"):
        return "database"
    return "server"


def is_managed(name: str, labels: Optional[dict]) -> bool:
    if (labels or {}).get(MANAGED_LABEL_KEY) == MANAGED_LABEL_VALUE:
        return True
    return name.lstrip("/").startswith(MANAGED_NAME_PREFIXES)


class AttachStream:
    """Hijacked attach socket: blocking reads of the container's output, writes to its stdin."""

    def __init__(self, container_id: str, sock):
        self.container_id = container_id
        self._sock = sock
        # docker-py hands back a SocketIO wrapper on unix sockets; the raw socket sits in _sock
        self._raw = getattr(sock, "_sock", sock)
        self._raw.setblocking(True)
        self.closed = False

    def read(self, size: int = 4096) -> bytes:
        """Return the next chunk, or b"" once the engine closed the stream."""
        if self.closed:
            return b""
        try:
            return self._raw.recv(size)
        except OSError as e:
            if self.closed:
                return b""
            raise AttachError("Attach stream read failed", container_id=self.container_id, cause=e) from e

    def write(self, data: bytes) -> None:
        if self.closed:
            raise AttachError("Attach stream is closed", container_id=self.container_id)
        try:
            self._raw.sendall(data)
        except OSError as e:
            raise AttachError("Attach stream write failed", container_id=self.container_id, cause=e) from e

    def close_write(self) -> None:
        try:
            self._raw.shutdown(socket.SHUT_WR)
        except OSError:
            # Already shut down or reset by the daemon
            pass

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Shutting down both directions wakes a reader blocked in recv(); close() alone does not
        try:
            self._raw.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already shut down or reset by the daemon
            pass
        try:
            self._sock.close()
        finally:
            if self._raw is not self._sock:
                self._raw.close()


class DockerManager:
    """Container engine client shared by every bridge component.

    Holds a single docker SDK client; each call goes to the daemon, nothing
    about a container is cached between calls.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None):
        self.client = client or self._init_client()

    def _init_client(self) -> docker.DockerClient:
        docker_host = os.environ.get("DOCKER_HOST")
        if docker_host:
            return docker.DockerClient(base_url=docker_host)
        try:
            return docker.from_env()
        except DockerException:
            pass
        fallback_hosts = [
            "host.docker.internal",
            "gateway.docker.internal",
            "docker.for.win.localhost",
        ]
        last_exc = None
        for host in fallback_hosts:
            try:
                return docker.DockerClient(base_url=f"tcp://{host}:2375")
            except DockerException as exc:
                last_exc = exc
        raise TransportError(
            "Cannot connect to Docker. Mount /var/run/docker.sock or set DOCKER_HOST=tcp://host.docker.internal:2375.",
            cause=last_exc,
        )

    def ping(self) -> bool:
        """Check the daemon; a dropped connection is replaced by a fresh client."""
        try:
            return bool(self.client.ping())
        except (DockerException, RequestException) as e:
            logger.warning(f"Docker ping failed, reconnecting: {e}")
        try:
            self.client.close()
            self.client = self._init_client()
            return bool(self.client.ping())
        except (TransportError, DockerException, RequestException) as e:
            logger.error(f"Docker reconnect failed: {e}")
            return False

    def _get_container(self, container_id: str):
        try:
            return self.client.containers.get(container_id)
        except NotFound as e:
            raise ContainerNotFound(f"Container {container_id} not found", container_id=container_id, cause=e) from e
        except (DockerException, RequestException) as e:
            raise TransportError("Docker engine unreachable", container_id=container_id, cause=e) from e

    def inspect(self, container_id: str) -> ContainerDescriptor:
        container = self._get_container(container_id)
        return descriptor_from_attrs(container.attrs)

    def attach(self, container_id: str, stdin: bool = True, stdout: bool = True,
               stderr: bool = True, logs: bool = True) -> AttachStream:
        """Open a hijacked attach connection to the container's stdio."""
        params = {
            "stdin": int(stdin),
            "stdout": int(stdout),
            "stderr": int(stderr),
            "stream": 1,
            "logs": int(logs),
        }
        try:
            sock = self.client.api.attach_socket(container_id, params=params)
        except NotFound as e:
            raise ContainerNotFound(f"Container {container_id} not found", container_id=container_id, cause=e) from e
        except (DockerException, RequestException, OSError) as e:
            raise AttachError(f"Failed to attach to {container_id}", container_id=container_id, cause=e) from e
        logger.info(f"Attached to container {container_id}")
        return AttachStream(container_id, sock)

    def start(self, container_id: str) -> None:
        container = self._get_container(container_id)
        try:
            container.start()
        except APIError as e:
            raise EngineLifecycleError(f"Failed to start {container_id}", container_id=container_id, cause=e) from e
        except (DockerException, RequestException) as e:
            raise TransportError("Docker engine unreachable", container_id=container_id, cause=e) from e
        logger.info(f"Started container {container_id}")

    def stop(self, container_id: str) -> None:
        container = self._get_container(container_id)
        try:
            container.stop()
        except APIError as e:
            raise EngineLifecycleError(f"Failed to stop {container_id}", container_id=container_id, cause=e) from e
        except (DockerException, RequestException) as e:
            raise TransportError("Docker engine unreachable", container_id=container_id, cause=e) from e
        logger.info(f"Stopped container {container_id}")

    def list_managed(self) -> List[ContainerDescriptor]:
        """Fresh descriptors of every container created by this panel."""
        try:
            summaries = self.client.api.containers(all=True)
        except (DockerException, RequestException) as e:
            raise TransportError("Docker engine unreachable", cause=e) from e
        result = []
        for summary in summaries:
            names = summary.get("Names") or []
            name = names[0] if names else ""
            if not is_managed(name, summary.get("Labels")):
                continue
            try:
                result.append(self.inspect(summary["Id"]))
            except ContainerNotFound:
                # Removed between listing and inspection
                logger.info(f"Container {name} disappeared while listing")
        return result
