import socket
import threading
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, NotFound

from docker_manager import AttachStream, DockerManager, descriptor_from_attrs, infer_container_type, is_managed
from errors import AttachError, ContainerNotFound, EngineLifecycleError
from conftest import make_descriptor

INSPECT = {
    "Id": "3f2a9c",
    "Name": "/mc-lobby",
    "State": {"Running": True, "Status": "running"},
    "Config": {
        "Tty": False,
        "Image": "itzg/minecraft-server:latest",
        "Env": ["EULA=TRUE", "TYPE=PAPER"],
        "Labels": {"created_by": "mc-admin", "server_type": "paper"},
    },
    "HostConfig": {"Binds": ["/srv/servers/mc-lobby:/data:rw"]},
    "Mounts": [{"Type": "bind", "Source": "/srv/servers/mc-lobby", "Destination": "/data"}],
}


def test_descriptor_from_inspect_payload():
    d = descriptor_from_attrs(INSPECT)
    assert d.id == "3f2a9c"
    assert d.name == "mc-lobby"
    assert d.running and not d.tty
    assert d.mounts[0].source == "/srv/servers/mc-lobby"
    assert d.binds == ["/srv/servers/mc-lobby:/data:rw"]
    assert d.labels["server_type"] == "paper"


def test_descriptor_tolerates_sparse_payload():
    d = descriptor_from_attrs({"Id": "x", "Config": None, "Mounts": None})
    assert d.name == ""
    assert not d.running
    assert d.mounts == []


@pytest.mark.parametrize("name,labels,expected", [
    ("mc-lobby", {}, "server"),
    ("mc-lobby", {"server_type": "paper"}, "server"),
    ("hub", {"server_type": "velocity-proxy"}, "proxy"),
    ("proxy-hub", {}, "proxy"),
    ("db-main", {}, "database"),
    ("stats", {"server_type": "database"}, "database"),
])
def test_infer_container_type(name, labels, expected):
    assert infer_container_type(make_descriptor("c", name, labels=labels)) == expected


def test_is_managed():
    assert is_managed("/mc-lobby", {})
    assert is_managed("/whatever", {"created_by": "mc-admin"})
    assert not is_managed("/portainer", {"com.docker.compose.project": "tools"})
    assert not is_managed("/portainer", None)


def make_manager():
    client = MagicMock()
    return DockerManager(client=client), client


def test_inspect_not_found():
    manager, client = make_manager()
    client.containers.get.side_effect = NotFound("no such container")
    with pytest.raises(ContainerNotFound) as info:
        manager.inspect("ghost")
    assert info.value.container_id == "ghost"


def test_stop_api_error_is_lifecycle_error():
    manager, client = make_manager()
    client.containers.get.return_value.stop.side_effect = APIError("conflict")
    with pytest.raises(EngineLifecycleError):
        manager.stop("mc-lobby")


def test_list_managed_filters_and_inspects_fresh():
    manager, client = make_manager()
    client.api.containers.return_value = [
        {"Id": "3f2a9c", "Names": ["/mc-lobby"], "Labels": {}},
        {"Id": "aaaa", "Names": ["/portainer"], "Labels": {}},
    ]
    client.containers.get.return_value.attrs = INSPECT
    result = manager.list_managed()
    assert [d.name for d in result] == ["mc-lobby"]
    client.containers.get.assert_called_once_with("3f2a9c")


def test_attach_passes_stream_params():
    manager, client = make_manager()
    ours, theirs = socket.socketpair()
    client.api.attach_socket.return_value = ours
    stream = manager.attach("mc-lobby")
    client.api.attach_socket.assert_called_once_with(
        "mc-lobby", params={"stdin": 1, "stdout": 1, "stderr": 1, "stream": 1, "logs": 1}
    )
    stream.close()
    theirs.close()


def test_attach_failure():
    manager, client = make_manager()
    client.api.attach_socket.side_effect = APIError("hijack failed")
    with pytest.raises(AttachError):
        manager.attach("mc-lobby")


def test_attach_stream_roundtrip_and_close():
    ours, theirs = socket.socketpair()
    stream = AttachStream("c1", ours)
    theirs.sendall(b"\x01\x00\x00\x00\x00\x00\x00\x02hi")
    assert stream.read(4096) == b"\x01\x00\x00\x00\x00\x00\x00\x02hi"

    stream.write(b"say hi\n")
    assert theirs.recv(64) == b"say hi\n"

    stream.close_write()
    assert theirs.recv(64) == b""

    theirs.close()
    assert stream.read() == b""

    stream.close()
    stream.close()
    assert stream.read() == b""
    with pytest.raises(AttachError):
        stream.write(b"late")


def test_close_wakes_a_blocked_reader():
    ours, theirs = socket.socketpair()
    stream = AttachStream("c1", ours)
    result = []
    reader = threading.Thread(target=lambda: result.append(stream.read(4096)))
    reader.start()
    try:
        # Nothing is ever sent: the reader sits in recv() until close()
        reader.join(0.2)
        assert reader.is_alive()
        stream.close()
        reader.join(2)
        assert not reader.is_alive()
        assert result == [b""]
    finally:
        theirs.close()
