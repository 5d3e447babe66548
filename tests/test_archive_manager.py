import io
import os
import tarfile

import pytest

from archive_manager import ArchiveManager
from errors import ArchiveReadError, ArchiveWriteError


def build_tree(root):
    files = {
        "server.properties": b"motd=Hello\nmax-players=20\n",
        "world/level.dat": bytes(range(256)) * 8,
        "world/region/r.0.0.mca": os.urandom(4096),
        "plugins/LuckPerms/config.yml": b"storage-method: h2\n",
        "plugins/LuckPerms/logs/actions.log": b"nested logs are excluded too\n",
        "logs/latest.log": b"[INFO] Done\n",
        "cache/mojang_1.20.jar": b"jar",
        "libraries/com/x.jar": b"lib",
        "versions/1.20.4/server.jar": b"server",
        ".hidden": b"dotfiles are kept",
    }
    for rel, data in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
    (root / "empty").mkdir()
    return files


def read_tree(root):
    out = {}
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            full = os.path.join(dirpath, name)
            out[os.path.relpath(full, root).replace(os.sep, "/")] = open(full, "rb").read()
    return out


EXCLUDED_TOPS = ("logs/", "cache/", "libraries/", "versions/")


def test_roundtrip_with_server_profile(tmp_path):
    src, dest, archive = tmp_path / "src", tmp_path / "dest", tmp_path / "b.tar.gz"
    src.mkdir()
    files = build_tree(src)
    archives = ArchiveManager()

    archives.create(src, archive, profile="server")
    archives.extract(archive, dest)

    expected = {
        rel: data for rel, data in files.items()
        if not rel.startswith(EXCLUDED_TOPS) and "/logs/" not in rel
    }
    assert read_tree(dest) == expected
    assert (dest / "empty").is_dir()


def test_proxy_profile_keeps_everything(tmp_path):
    src, dest, archive = tmp_path / "src", tmp_path / "dest", tmp_path / "p.tar.gz"
    src.mkdir()
    files = build_tree(src)
    archives = ArchiveManager()
    archives.create(src, archive, profile="proxy")
    archives.extract(archive, dest)
    assert read_tree(dest) == files


def test_archive_is_gzip_tar(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "a.txt").write_text("a")
    archive = tmp_path / "a.tar.gz"
    count = ArchiveManager().create(src, archive)
    assert count == 1
    assert archive.read_bytes()[:2] == b"\x1f\x8b"
    with tarfile.open(archive, "r:gz") as tar:
        assert tar.getnames() == ["a.txt"]


def test_partial_archive_removed_on_failure(tmp_path, monkeypatch):
    src = tmp_path / "src"
    src.mkdir()
    build_tree(src)
    archive = tmp_path / "broken.tar.gz"

    def exploding_add(self, *args, **kwargs):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(tarfile.TarFile, "add", exploding_add)
    with pytest.raises(ArchiveWriteError) as info:
        ArchiveManager().create(src, archive)
    assert isinstance(info.value.cause, OSError)
    assert not archive.exists()


def test_missing_source_creates_nothing(tmp_path):
    archive = tmp_path / "x.tar.gz"
    with pytest.raises(ArchiveWriteError):
        ArchiveManager().create(tmp_path / "nope", archive)
    assert not archive.exists()


def test_extract_with_subdir_filter(tmp_path):
    a, b = tmp_path / "a", tmp_path / "b"
    a.mkdir()
    b.mkdir()
    (a / "world").mkdir()
    (a / "world" / "level.dat").write_bytes(b"A")
    (b / "velocity.toml").write_bytes(b"B")
    archive = tmp_path / "full.tar.gz"
    archives = ArchiveManager()
    with archives.writer(archive) as tar:
        archives.add_tree(tar, a, arc_prefix="mc-a", profile="server")
        archives.add_tree(tar, b, arc_prefix="mc-ab", profile="proxy")

    dest = tmp_path / "restore"
    count = archives.extract(archive, dest, subdir_filter="mc-a")
    assert read_tree(dest) == {"world/level.dat": b"A"}
    assert count == 2  # world/ and world/level.dat

    other = tmp_path / "restore-b"
    archives.extract(archive, other, subdir_filter="mc-ab")
    assert read_tree(other) == {"velocity.toml": b"B"}


def test_extract_with_filter_not_present(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "x").write_text("x")
    archive = tmp_path / "full.tar.gz"
    archives = ArchiveManager()
    with archives.writer(archive) as tar:
        archives.add_tree(tar, src, arc_prefix="mc-x")
    assert archives.extract(archive, tmp_path / "out", subdir_filter="mc-y") == 0


def test_corrupt_archive(tmp_path):
    archive = tmp_path / "corrupt.tar.gz"
    archive.write_bytes(b"this is not a tarball at all" * 10)
    with pytest.raises(ArchiveReadError):
        ArchiveManager().extract(archive, tmp_path / "out")


def test_truncated_archive(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "big.bin").write_bytes(os.urandom(200_000))
    archive = tmp_path / "t.tar.gz"
    ArchiveManager().create(src, archive)
    data = archive.read_bytes()
    archive.write_bytes(data[: len(data) // 2])
    with pytest.raises(ArchiveReadError):
        ArchiveManager().extract(archive, tmp_path / "out")


def test_entries_escaping_destination_are_rejected(tmp_path):
    archive = tmp_path / "evil.tar.gz"
    payload = b"owned"
    with tarfile.open(archive, "w:gz") as tar:
        info = tarfile.TarInfo("../evil.txt")
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))
    dest = tmp_path / "out"
    with pytest.raises(ArchiveReadError):
        ArchiveManager().extract(archive, dest)
    assert not (tmp_path / "evil.txt").exists()
