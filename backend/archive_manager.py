import os
import zlib
import fnmatch
import logging
import tarfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from errors import ArchiveWriteError, ArchiveReadError

logger = logging.getLogger(__name__)

# Directory name globs pruned from a backup, matched at any depth.
# Server backups skip what the server regenerates on start.
EXCLUDE_PROFILES = {
    "server": ("logs", "cache", "libraries", "versions"),
    "proxy": (),
    "database": (),
    "full": (),
}

_READ_ERRORS = (tarfile.TarError, EOFError, zlib.error, OSError)


def excluded_dirs(profile: Optional[str]) -> tuple:
    return EXCLUDE_PROFILES.get(profile or "", ())


class ArchiveManager:
    """Streams directory trees into and out of gzip-compressed tarballs."""

    def __init__(self, compresslevel: int = 6):
        self.compresslevel = compresslevel

    @contextmanager
    def writer(self, dest_file: Path) -> Iterator[tarfile.TarFile]:
        """Open ``dest_file`` for writing; it is deleted again if anything fails."""
        dest_file = Path(dest_file)
        dest_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(dest_file, "w:gz", compresslevel=self.compresslevel) as tar:
                yield tar
        except BaseException as e:
            self._discard(dest_file)
            if isinstance(e, (OSError, tarfile.TarError)):
                raise ArchiveWriteError(f"Failed to write archive {dest_file.name}", cause=e) from e
            raise

    def create(self, source_root: Path, dest_file: Path, profile: Optional[str] = "server") -> int:
        """Archive everything below ``source_root``. Returns the number of entries written."""
        source_root = Path(source_root)
        if not source_root.is_dir():
            raise ArchiveWriteError(f"Source directory {source_root} does not exist")
        with self.writer(dest_file) as tar:
            count = self.add_tree(tar, source_root, profile=profile)
        logger.info(f"Archived {count} entries from {source_root} into {Path(dest_file).name}")
        return count

    def add_tree(self, tar: tarfile.TarFile, source_root: Path, arc_prefix: str = "",
                 profile: Optional[str] = "server") -> int:
        """Add the contents of ``source_root`` to an open archive, below ``arc_prefix``."""
        source_root = Path(source_root)
        patterns = excluded_dirs(profile)
        prefix = arc_prefix.strip("/")
        count = 0
        if prefix:
            tar.add(str(source_root), arcname=prefix, recursive=False)
            count += 1
        for dirpath, dirnames, filenames in os.walk(source_root):
            dirnames[:] = sorted(
                d for d in dirnames if not any(fnmatch.fnmatch(d, p) for p in patterns)
            )
            rel_dir = os.path.relpath(dirpath, source_root)
            for name in dirnames + sorted(filenames):
                rel = name if rel_dir == "." else f"{rel_dir}/{name}"
                rel = rel.replace(os.sep, "/")
                arcname = f"{prefix}/{rel}" if prefix else rel
                tar.add(os.path.join(dirpath, name), arcname=arcname, recursive=False)
                count += 1
        return count

    def extract(self, archive_file: Path, dest_root: Path, subdir_filter: Optional[str] = None) -> int:
        """Stream entries of ``archive_file`` into ``dest_root``.

        With ``subdir_filter`` only entries below ``subdir_filter/`` are taken,
        with that prefix removed. Returns the number of extracted entries.
        """
        archive_file = Path(archive_file)
        dest_root = Path(dest_root)
        dest_root.mkdir(parents=True, exist_ok=True)
        prefix = subdir_filter.strip("/") + "/" if subdir_filter else None
        count = 0
        try:
            with tarfile.open(archive_file, "r|*") as tar:
                for member in tar:
                    if prefix is not None:
                        if not member.name.startswith(prefix):
                            continue
                        member.name = member.name[len(prefix):]
                        if member.islnk() and member.linkname.startswith(prefix):
                            member.linkname = member.linkname[len(prefix):]
                        if not member.name:
                            continue
                    tar.extract(member, path=str(dest_root), filter="data")
                    count += 1
        except _READ_ERRORS as e:
            logger.error(f"Failed to extract {archive_file.name} into {dest_root}: {e}")
            raise ArchiveReadError(f"Archive {archive_file.name} is unreadable or truncated", cause=e) from e
        logger.info(f"Extracted {count} entries from {archive_file.name} into {dest_root}")
        return count

    def _discard(self, dest_file: Path) -> None:
        try:
            dest_file.unlink()
            logger.warning(f"Removed partial archive {dest_file}")
        except FileNotFoundError:
            pass
