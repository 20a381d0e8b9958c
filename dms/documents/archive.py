"""
DMS Archive Builder — Zip assembly for bulk download and email.

Lifecycle:
    builder = ArchiveBuilder(store, storage, permissions, config)
    with builder:                       # open() ... close()
        builder.add_folder(folder, ctx, "Parent/Path")
        builder.add_file(file, ctx, None)
        path = builder.finish()         # TooManyFiles checked here, once
        consumer(path)
    # temporary zip is gone

Adds only stage entries; finish() streams stored content into the zip in
chunks, so the caller can end its database transaction before finish().
close() is idempotent and removes the temporary file at most once.
"""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple
from zipfile import ZIP_DEFLATED, ZipFile, ZipInfo

from dms.db.base import utcnow
from dms.db.models import File, FileRevision, Folder
from dms.documents.interfaces import VIEW_FILES, PermissionProvider, StorageBackend
from dms.documents.storage import CHUNK_SIZE, safe_filename
from dms.engine.config import DocumentsConfig
from dms.engine.context import ExecutionContext
from dms.engine.errors import AccessDenied, FileNotFound, TooManyFiles
from dms.engine.logging import log, log_security_event

logger = logging.getLogger("dms.documents.archive")


def _join(prefix: Optional[str], name: str) -> str:
    return posixpath.join(prefix, name) if prefix else name


class ArchiveBuilder:
    """Single-use zip artifact built from folders and files."""

    def __init__(
        self,
        store,
        storage: StorageBackend,
        permissions: PermissionProvider,
        config: DocumentsConfig,
        temp_dir: Optional[str] = None,
    ):
        self._store = store
        self._storage = storage
        self._permissions = permissions
        self._config = config
        self._temp_dir = temp_dir
        self._path: Optional[Path] = None
        self._released = False
        self._directories: List[str] = []
        self._entries: List[Tuple[str, FileRevision]] = []
        self._files: List[File] = []
        self._file_ids: Set[int] = set()
        self._folder_ids: Set[int] = set()
        self._names: Set[str] = set()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def files(self) -> List[File]:
        """Files included so far, in insertion order."""
        return list(self._files)

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    def open(self) -> "ArchiveBuilder":
        if self._path is not None:
            raise RuntimeError("Archive builder is single-use")
        if self._temp_dir:
            os.makedirs(self._temp_dir, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="dms_", suffix=".zip", dir=self._temp_dir)
        os.close(fd)
        self._path = Path(name)
        logger.debug(f"Opened archive {self._path}")
        return self

    def close(self) -> None:
        """Remove the temporary artifact. Safe to call any number of times."""
        if self._path is None or self._released:
            return
        self._released = True
        try:
            os.remove(self._path)
            logger.debug(f"Removed archive {self._path}")
        except FileNotFoundError:
            pass

    def __enter__(self) -> "ArchiveBuilder":
        if self._path is None:
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------------------------------------------------
    # Staging
    # -------------------------------------------------------------------

    def _unique_name(self, arcname: str) -> str:
        if arcname not in self._names:
            self._names.add(arcname)
            return arcname
        stem, ext = posixpath.splitext(arcname)
        idx = 1
        while f"{stem}_{idx}{ext}" in self._names:
            idx += 1
        unique = f"{stem}_{idx}{ext}"
        self._names.add(unique)
        return unique

    def _reserve_directory(self, folder: Folder, prefix: Optional[str]) -> str:
        # A directory blocks both "x/" and "x" so files and folders never share a name.
        dir_path = self._unique_name(_join(prefix, safe_filename(folder.title)))
        self._names.add(dir_path + "/")
        self._directories.append(dir_path + "/")
        self._folder_ids.add(folder.id)
        return dir_path

    def _check_access(self, ctx: ExecutionContext, entity, name: str) -> None:
        """Raise AccessDenied unless the user may view files of the entity's project."""
        if (
            entity.project_id == ctx.project_id
            or self._permissions.is_member(ctx, entity.project_id)
            or self._permissions.allowed_to(ctx, VIEW_FILES, entity.project_id)
        ):
            return
        object_ref = f"{entity.kind}-{entity.id}"
        log(log_security_event(
            "access_denied", object_ref, f"{entity.kind}s", VIEW_FILES,
            ctx.user_id, entity.project_id, execution_id=ctx.execution_id,
        ))
        raise AccessDenied(
            f"Access denied to {entity.kind} '{name}'",
            object_ref=object_ref,
            user_id=ctx.user_id,
            project_id=entity.project_id,
            required_permission=VIEW_FILES,
        )

    def _stage(self, file: File, revision: FileRevision, path_prefix: Optional[str]) -> None:
        if file.id in self._file_ids:
            return
        self._file_ids.add(file.id)
        self._files.append(file)
        self._entries.append((self._unique_name(_join(path_prefix, safe_filename(file.name))), revision))

    def _has_content(self, revision: Optional[FileRevision]) -> bool:
        return revision is not None and self._storage.exists(revision.disk_path)

    def add_folder(self, folder: Folder, ctx: ExecutionContext, path_prefix: Optional[str] = None) -> None:
        """
        Add ``folder`` as ``path_prefix/title/`` with its visible subtree.

        Files without stored content are skipped. Raises AccessDenied when the
        user may not view the files of the folder's project.
        """
        if folder.id in self._folder_ids:
            return
        self._check_access(ctx, folder, folder.title)
        stack = [(folder, self._reserve_directory(folder, path_prefix))]
        while stack:
            current, dir_path = stack.pop()
            listing = self._store.list_visible(current.project_id, current)
            subfolders = [
                (sub, self._reserve_directory(sub, dir_path))
                for sub in listing.folders
                if sub.id not in self._folder_ids
            ]
            for file in listing.files:
                revision = file.last_revision
                if not self._has_content(revision):
                    logger.warning(f"Skipping file-{file.id} '{file.name}': no stored content")
                    continue
                self._check_access(ctx, file, file.name)
                self._stage(file, revision, dir_path)
            stack.extend(reversed(subfolders))

    def add_file(self, file: File, ctx: ExecutionContext, path_prefix: Optional[str] = None) -> None:
        """
        Add one file.

        Raises FileNotFound when the file is invisible or has no stored last
        revision, AccessDenied when the user may not view the file's project.
        """
        revision = file.last_revision
        if not self._store.is_visible(file) or not self._has_content(revision):
            raise FileNotFound(
                f"File '{file.name}' not found",
                entity_kind="file",
                entity_id=file.id,
                user_id=ctx.user_id,
            )
        self._check_access(ctx, file, file.name)
        self._stage(file, revision, path_prefix)

    # -------------------------------------------------------------------
    # Assembly
    # -------------------------------------------------------------------

    def finish(self) -> Path:
        """Write the staged entries and return the artifact path."""
        if self._path is None or self._released:
            raise RuntimeError("Archive builder is not open")

        limit = self._config.max_download_file_count
        if limit > 0 and len(self._files) > limit:
            raise TooManyFiles(
                f"Too many files for download ({len(self._files)} > {limit})",
                file_count=len(self._files),
                limit=limit,
            )

        with ZipFile(self._path, "w", ZIP_DEFLATED) as zf:
            for directory in self._directories:
                zf.writestr(directory, b"")
            for arcname, revision in self._entries:
                info = ZipInfo(arcname, date_time=(revision.created_at or utcnow()).timetuple()[:6])
                info.compress_type = ZIP_DEFLATED
                with self._storage.open(revision.disk_path) as src, zf.open(info, "w", force_zip64=True) as dst:
                    shutil.copyfileobj(src, dst, CHUNK_SIZE)

        logger.info(f"Archive {self._path.name}: {len(self._entries)} files, {len(self._directories)} folders")
        return self._path

    def summary(self) -> Dict[str, int]:
        return {"files": len(self._entries), "folders": len(self._directories)}
