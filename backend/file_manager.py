import shutil
import logging
from pathlib import Path, PurePosixPath
from typing import List

from fastapi import HTTPException

logger = logging.getLogger(__name__)


class FileManager:
    """File access inside a container's data volume, by container id."""

    def __init__(self, resolver):
        self.resolver = resolver

    def list_dir(self, container_id: str, rel: str = ".") -> List[dict]:
        target = self.resolver.resolve(container_id, rel)
        if not target.exists():
            raise HTTPException(status_code=404, detail="Path not found")
        if not target.is_dir():
            raise HTTPException(status_code=400, detail="Path is not a directory")
        items = []
        for p in target.iterdir():
            items.append({
                "name": p.name,
                "is_directory": p.is_dir(),
                "path": str(PurePosixPath(rel.replace("\\", "/")) / p.name),
            })
        # Directories first, then by name
        items.sort(key=lambda x: (not x["is_directory"], x["name"]))
        return items

    def read_file(self, container_id: str, rel: str) -> str:
        target = self.resolver.resolve(container_id, rel)
        if not target.exists() or not target.is_file():
            raise HTTPException(status_code=404, detail="File not found")
        return target.read_text(encoding="utf-8", errors="replace")

    def write_file(self, container_id: str, rel: str, content: str) -> None:
        target = self.resolver.resolve(container_id, rel)
        if target.is_dir():
            raise HTTPException(status_code=400, detail="Path is a directory")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        logger.info(f"Wrote {len(content)} characters to {target}")

    def delete_path(self, container_id: str, rel: str) -> None:
        root = self.resolver.data_root(container_id)
        target = self.resolver.join(root, rel, container_id=container_id)
        if target == root:
            raise HTTPException(status_code=400, detail="Refusing to delete the data root")
        # Remove the entry itself: a symlink goes, never the tree it points at
        rel_path = PurePosixPath(rel.replace("\\", "/"))
        entry = target
        if rel_path.name not in ("", ".", ".."):
            parent = self.resolver.join(root, str(rel_path.parent), container_id=container_id)
            entry = parent / rel_path.name
        if entry.is_symlink() or entry.is_file():
            entry.unlink()
        elif entry.is_dir():
            shutil.rmtree(entry)
        else:
            raise HTTPException(status_code=404, detail="Path not found")
        logger.info(f"Deleted {entry}")
