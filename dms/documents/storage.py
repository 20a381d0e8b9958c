"""
DMS Local Storage — Revision content on the local filesystem.

Physical storage: {storage_directory}/{disk_path}
where disk_path = p_{project_id}/{YYMMDDHHMMSS}_{file_id}_{revision_seq}_{safe_name}
"""

from __future__ import annotations

import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger("dms.documents.storage")

CHUNK_SIZE = 8192


class LocalStorageBackend:
    """Stores revision content as plain files below one root directory."""

    def __init__(self, root: str):
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def physical_path(self, path: str) -> Path:
        resolved = (self._root / path).resolve()
        if self._root.resolve() not in resolved.parents:
            raise ValueError(f"Storage path escapes the storage root: {path}")
        return resolved

    def exists(self, path: str) -> bool:
        return self.physical_path(path).is_file()

    def size(self, path: str) -> int:
        return self.physical_path(path).stat().st_size

    def delete(self, path: str) -> None:
        p = self.physical_path(path)
        if p.exists():
            p.unlink()
            logger.info(f"Deleted file: {p}")

    def open(self, path: str) -> BinaryIO:
        return open(self.physical_path(path), "rb")

    def write(self, path: str, data: BinaryIO) -> int:
        """Stream ``data`` into ``path``; returns bytes written."""
        p = self.physical_path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        bytes_written = 0
        with open(p, "wb") as f:
            while True:
                chunk = data.read(CHUNK_SIZE)
                if not chunk:
                    break
                f.write(chunk)
                bytes_written += len(chunk)
        return bytes_written

    def copy(self, src: str, dst: str) -> None:
        target = self.physical_path(dst)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.physical_path(src), target)

    def __repr__(self) -> str:
        return f"<LocalStorageBackend root='{self._root}'>"


def make_disk_path(project_id: int, file_id: int, seq: int, file_name: str) -> str:
    """Build a collision-free relative path for a new revision."""
    stamp = datetime.now(timezone.utc).strftime("%y%m%d%H%M%S")
    return f"p_{project_id}/{stamp}_{file_id}_{seq}_{safe_filename(file_name)}"


def safe_filename(filename: str) -> str:
    """
    Sanitize a filename for filesystem and archive use.

    Removes path separators, control characters and leading dots.
    """
    name = os.path.basename(filename.replace("\\", "/"))
    name = "".join(c for c in name if c.isprintable() and c not in '<>:"/\\|?*')
    name = name.lstrip(".")
    if not name:
        name = "unnamed_document"
    if len(name) > 200:
        base, ext = os.path.splitext(name)
        name = base[:200 - len(ext)] + ext
    return name
