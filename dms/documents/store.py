"""
DMS Entity Store — Persistence, validation and lifecycle of folders, files and links.

Handles:
- Lookups (raw and visible-only) and one-level listings
- Save-time validation (titles, parents, tree cycles)
- Folder/file/link creation and revision upload through the storage backend
- Soft delete (cascading for folders), restore, hard delete (destroy)
- Download/email access auditing

Visibility: an entity is visible when neither it nor any ancestor folder is
deleted. Restoring a child of a deleted folder clears the child's flag but
leaves it invisible until the ancestor is restored as well.

Transactions: every mutating call is one unit of work. It commits on success;
on a database error it rolls back and re-raises. Validation failures are
returned as a list of messages and nothing is written.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional, Union

from sqlalchemy import delete as sa_delete
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dms.db.base import utcnow
from dms.db.models import File, FileRevision, FileRevisionAccess, Folder, Link, Lock, Project
from dms.documents.hierarchy import ancestor_chain, descendant_folder_ids, is_descendant_or_self, path_str
from dms.documents.interfaces import StorageBackend
from dms.documents.storage import make_disk_path
from dms.engine.context import ExecutionContext
from dms.engine.errors import DMSValidationError, FileNotFound, NotFound
from dms.engine.logging import log, log_document_access

logger = logging.getLogger("dms.documents.store")

Entity = Union[Folder, File, Link]

LINK_TARGET_TYPES = ("folder", "file", "url")
FOLDER_FIELDS = ("title", "description", "parent_id", "notification")


@dataclass
class ListedEntries:
    """One level of the hierarchy (or the trash) grouped by kind."""

    folders: List[Folder] = field(default_factory=list)
    files: List[File] = field(default_factory=list)
    links: List[Link] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.folders) + len(self.files) + len(self.links)


def _parent_id(entity: Entity) -> Optional[int]:
    return entity.parent_id if isinstance(entity, Folder) else entity.folder_id


class EntityStore:
    """
    Folder/file/link store bound to one session.

    ``locks`` is the LockManager consulted before deletions; without one,
    deletions skip the lock checks (CLI maintenance use).
    """

    def __init__(self, session: Session, storage: StorageBackend, locks=None):
        self._session = session
        self._storage = storage
        self._locks = locks

    @property
    def session(self) -> Session:
        return self._session

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------

    def find_project(self, project_id: int) -> Project:
        project = self._session.get(Project, project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found", entity_kind="project", entity_id=project_id)
        return project

    def get_folder(self, folder_id: int) -> Optional[Folder]:
        return self._session.get(Folder, folder_id)

    def get_file(self, file_id: int) -> Optional[File]:
        return self._session.get(File, file_id)

    def get_link(self, link_id: int) -> Optional[Link]:
        return self._session.get(Link, link_id)

    def find_folder(self, folder_id: int) -> Folder:
        folder = self.get_folder(folder_id)
        if folder is None:
            raise NotFound(f"Folder {folder_id} not found", entity_kind="folder", entity_id=folder_id)
        return folder

    def find_file(self, file_id: int) -> File:
        file = self.get_file(file_id)
        if file is None:
            raise FileNotFound(f"File {file_id} not found", entity_kind="file", entity_id=file_id)
        return file

    def find_link(self, link_id: int) -> Link:
        link = self.get_link(link_id)
        if link is None:
            raise NotFound(f"Link {link_id} not found", entity_kind="link", entity_id=link_id)
        return link

    def is_visible(self, entity: Entity) -> bool:
        if entity.deleted:
            return False
        return not any(f.deleted for f in ancestor_chain(self._session, _parent_id(entity)))

    def find_visible_folder(self, folder_id: int) -> Folder:
        folder = self.get_folder(folder_id)
        if folder is None or not self.is_visible(folder):
            raise NotFound(f"Folder {folder_id} not found", entity_kind="folder", entity_id=folder_id)
        return folder

    def find_visible_file(self, file_id: int) -> File:
        file = self.get_file(file_id)
        if file is None or not self.is_visible(file):
            raise FileNotFound(f"File {file_id} not found", entity_kind="file", entity_id=file_id)
        return file

    def find_folder_by_title(self, project_id: int, title: str) -> Folder:
        q = (
            select(Folder)
            .where(Folder.project_id == project_id, Folder.title == title, Folder.deleted.is_(False))
            .order_by(Folder.id)
        )
        folder = self._session.execute(q).scalars().first()
        if folder is None:
            raise NotFound(f"Folder '{title}' not found", entity_kind="folder", project_id=project_id)
        return folder

    # -------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------

    def list_visible(
        self,
        project_id: int,
        parent: Optional[Folder] = None,
        include_deleted: bool = False,
    ) -> ListedEntries:
        """Folders, files and links directly inside ``parent`` (None = project root)."""
        if parent is not None and not include_deleted and not self.is_visible(parent):
            return ListedEntries()

        folders_q = select(Folder).where(Folder.project_id == project_id)
        files_q = select(File).where(File.project_id == project_id)
        links_q = select(Link).where(Link.project_id == project_id)
        if parent is None:
            folders_q = folders_q.where(Folder.parent_id.is_(None))
            files_q = files_q.where(File.folder_id.is_(None))
            links_q = links_q.where(Link.folder_id.is_(None))
        else:
            folders_q = folders_q.where(Folder.parent_id == parent.id)
            files_q = files_q.where(File.folder_id == parent.id)
            links_q = links_q.where(Link.folder_id == parent.id)
        if not include_deleted:
            folders_q = folders_q.where(Folder.deleted.is_(False))
            files_q = files_q.where(File.deleted.is_(False))
            links_q = links_q.where(Link.deleted.is_(False))

        return ListedEntries(
            folders=list(self._session.execute(folders_q.order_by(Folder.title)).scalars()),
            files=list(self._session.execute(files_q.order_by(File.name)).scalars()),
            links=list(self._session.execute(links_q.order_by(Link.title)).scalars()),
        )

    def list_trash(self, project_id: int) -> ListedEntries:
        """Every soft-deleted folder, file and link of the project."""
        return ListedEntries(
            folders=list(self._session.execute(
                select(Folder).where(Folder.project_id == project_id, Folder.deleted.is_(True)).order_by(Folder.title)
            ).scalars()),
            files=list(self._session.execute(
                select(File).where(File.project_id == project_id, File.deleted.is_(True)).order_by(File.name)
            ).scalars()),
            links=list(self._session.execute(
                select(Link).where(Link.project_id == project_id, Link.deleted.is_(True)).order_by(Link.title)
            ).scalars()),
        )

    # -------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------

    def folder_path(self, folder: Optional[Folder]) -> List[Folder]:
        if folder is None:
            return []
        return ancestor_chain(self._session, folder.id)

    def folder_path_str(self, folder: Optional[Folder]) -> str:
        return path_str(self.folder_path(folder))

    # -------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------

    def _check_parent(self, entity: Entity, check_deleted: bool) -> List[str]:
        parent_id = _parent_id(entity)
        if parent_id is None:
            return []
        parent = self._session.get(Folder, parent_id)
        if parent is None or parent.project_id != entity.project_id:
            return ["Parent folder does not exist"]
        if check_deleted and parent.deleted:
            return [f"Parent folder '{parent.title}' is deleted"]
        return []

    def validate_folder(self, folder: Folder, check_parent_deleted: bool = True) -> List[str]:
        """Save-time checks. Restore passes ``check_parent_deleted=False``."""
        errors: List[str] = []
        with self._session.no_autoflush:
            if not folder.title or not folder.title.strip():
                errors.append("Title cannot be blank")
            errors.extend(self._check_parent(folder, check_parent_deleted))
            if folder.id is not None and is_descendant_or_self(self._session, folder.id, folder.parent_id):
                errors.append("Folder cannot be placed inside itself or one of its subfolders")
            if folder.title:
                q = select(Folder.id).where(
                    Folder.project_id == folder.project_id,
                    Folder.title == folder.title,
                    Folder.deleted.is_(False),
                )
                q = q.where(Folder.parent_id.is_(None) if folder.parent_id is None else Folder.parent_id == folder.parent_id)
                if folder.id is not None:
                    q = q.where(Folder.id != folder.id)
                if self._session.execute(q.limit(1)).first() is not None:
                    errors.append(f"Title '{folder.title}' has already been taken")
        return errors

    def validate_file(self, file: File, check_parent_deleted: bool = True) -> List[str]:
        errors: List[str] = []
        with self._session.no_autoflush:
            if not file.name or not file.name.strip():
                errors.append("Name cannot be blank")
            errors.extend(self._check_parent(file, check_parent_deleted))
            if file.name:
                q = select(File.id).where(
                    File.project_id == file.project_id,
                    File.name == file.name,
                    File.deleted.is_(False),
                )
                q = q.where(File.folder_id.is_(None) if file.folder_id is None else File.folder_id == file.folder_id)
                if file.id is not None:
                    q = q.where(File.id != file.id)
                if self._session.execute(q.limit(1)).first() is not None:
                    errors.append(f"Name '{file.name}' has already been taken")
        return errors

    def validate_link(self, link: Link, check_parent_deleted: bool = True) -> List[str]:
        errors: List[str] = []
        with self._session.no_autoflush:
            if not link.title or not link.title.strip():
                errors.append("Title cannot be blank")
            if link.target_type not in LINK_TARGET_TYPES:
                errors.append(f"Unknown link type '{link.target_type}'")
            elif link.target_type == "url":
                if not link.external_url:
                    errors.append("External URL cannot be blank")
            elif link.target_id is None:
                errors.append("Link target cannot be blank")
            else:
                model = Folder if link.target_type == "folder" else File
                if self._session.get(model, link.target_id) is None:
                    errors.append(f"Link target {link.target_type}-{link.target_id} does not exist")
            errors.extend(self._check_parent(link, check_parent_deleted))
        return errors

    def validate(self, entity: Entity, check_parent_deleted: bool = True) -> List[str]:
        if isinstance(entity, Folder):
            return self.validate_folder(entity, check_parent_deleted)
        if isinstance(entity, File):
            return self.validate_file(entity, check_parent_deleted)
        return self.validate_link(entity, check_parent_deleted)

    # -------------------------------------------------------------------
    # Creation / Update
    # -------------------------------------------------------------------

    def _commit(self) -> None:
        try:
            self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            raise

    @staticmethod
    def _raise_invalid(entity: Entity, errors: List[str], ctx: ExecutionContext) -> None:
        raise DMSValidationError(
            "; ".join(errors),
            validation_errors=errors,
            object_ref=f"{entity.kind}-{entity.id}" if entity.id else entity.kind,
            user_id=ctx.user_id,
            project_id=entity.project_id,
        )

    def create_folder(
        self,
        ctx: ExecutionContext,
        project_id: int,
        title: str,
        parent: Optional[Folder] = None,
        description: Optional[str] = None,
        system: bool = False,
    ) -> Folder:
        """Create a folder; raises DMSValidationError with the save-time errors."""
        folder = Folder(
            project_id=project_id,
            parent_id=parent.id if parent is not None else None,
            title=title,
            description=description,
            user_id=ctx.user_id,
            system=system,
            notification=False,
            deleted=False,
        )
        errors = self.validate_folder(folder)
        if errors:
            self._raise_invalid(folder, errors, ctx)
        self._session.add(folder)
        self._commit()
        logger.info(f"Folder created: folder-{folder.id} '{title}' in project {project_id} by user {ctx.user_id}")
        return folder

    def update_folder(self, ctx: ExecutionContext, folder: Folder, **fields) -> Folder:
        """Apply ``fields`` (title, description, parent_id, notification) and save."""
        unknown = set(fields) - set(FOLDER_FIELDS)
        if unknown:
            raise ValueError(f"Unknown folder fields: {sorted(unknown)}")
        for name, value in fields.items():
            setattr(folder, name, value)
        errors = self.validate_folder(folder)
        if errors:
            self._session.rollback()
            self._raise_invalid(folder, errors, ctx)
        self._commit()
        logger.info(f"Folder saved: folder-{folder.id} by user {ctx.user_id}")
        return folder

    def _write_revision(
        self,
        ctx: ExecutionContext,
        file: File,
        content: BinaryIO,
        mime_type: Optional[str],
        comment: Optional[str],
        version: tuple,
    ) -> FileRevision:
        if mime_type is None:
            mime_type, _ = mimetypes.guess_type(file.name)
            mime_type = mime_type or "application/octet-stream"
        disk_path = make_disk_path(file.project_id, file.id, len(file.revisions) + 1, file.name)
        size = self._storage.write(disk_path, content)
        revision = FileRevision(
            name=file.name,
            title=file.name,
            disk_path=disk_path,
            size=size,
            mime_type=mime_type,
            major_version=version[0],
            minor_version=version[1],
            comment=comment,
            user_id=ctx.user_id,
            deleted=False,
        )
        file.revisions.append(revision)
        return revision

    def _save_revision(self, ctx, file, content, mime_type, comment, version) -> FileRevision:
        revision = None
        try:
            self._session.flush()
            revision = self._write_revision(ctx, file, content, mime_type, comment, version)
            self._session.commit()
        except (SQLAlchemyError, OSError):
            self._session.rollback()
            if revision is not None:
                self._storage.delete(revision.disk_path)
            raise
        logger.info(
            f"Stored revision {revision.version} of file-{file.id} '{file.name}' "
            f"({revision.size} bytes) by user {ctx.user_id}"
        )
        return revision

    def create_file(
        self,
        ctx: ExecutionContext,
        project_id: int,
        folder: Optional[Folder],
        name: str,
        content: BinaryIO,
        mime_type: Optional[str] = None,
        description: Optional[str] = None,
    ) -> File:
        """Create a file with its first revision (version 1.0)."""
        file = File(
            project_id=project_id,
            folder_id=folder.id if folder is not None else None,
            name=name,
            description=description,
            notification=False,
            deleted=False,
        )
        errors = self.validate_file(file)
        if errors:
            self._raise_invalid(file, errors, ctx)
        self._session.add(file)
        self._save_revision(ctx, file, content, mime_type, "Initial upload", (1, 0))
        return file

    def add_revision(
        self,
        ctx: ExecutionContext,
        file: File,
        content: BinaryIO,
        mime_type: Optional[str] = None,
        comment: Optional[str] = None,
        major: bool = False,
    ) -> FileRevision:
        """Append a revision; bumps the minor version, or the major one when ``major``."""
        last = file.last_revision
        if last is None:
            version = (1, 0)
        elif major:
            version = (last.major_version + 1, 0)
        else:
            version = (last.major_version, last.minor_version + 1)
        return self._save_revision(ctx, file, content, mime_type, comment, version)

    def create_link(
        self,
        ctx: ExecutionContext,
        project_id: int,
        folder: Optional[Folder],
        target_type: str,
        title: str,
        target_id: Optional[int] = None,
        external_url: Optional[str] = None,
    ) -> Link:
        link = Link(
            project_id=project_id,
            folder_id=folder.id if folder is not None else None,
            target_type=target_type,
            target_id=target_id,
            external_url=external_url,
            title=title,
            user_id=ctx.user_id,
            deleted=False,
        )
        errors = self.validate_link(link)
        if errors:
            self._raise_invalid(link, errors, ctx)
        self._session.add(link)
        self._commit()
        logger.info(f"Link created: link-{link.id} ({link.kind}) in project {project_id}")
        return link

    def set_notification(self, target: Union[Folder, Project], enabled: bool) -> bool:
        """Switch notifications on a folder or project root. False when already in that state."""
        if bool(target.notification) == enabled:
            return False
        target.notification = enabled
        self._commit()
        return True

    # -------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------

    def _locked(self, ctx: ExecutionContext, entity: Entity) -> bool:
        return self._locks is not None and self._locks.locked_for_user(ctx, entity)

    def delete(self, ctx: ExecutionContext, entity: Entity, commit: bool = False) -> List[str]:
        """Soft delete, or hard delete when ``commit`` is True."""
        if commit:
            return self.hard_delete(ctx, entity)
        return self.soft_delete(ctx, entity)

    def soft_delete(self, ctx: ExecutionContext, entity: Entity) -> List[str]:
        """Mark deleted. Folders cascade to every descendant folder, file and link."""
        if isinstance(entity, Folder):
            return self._delete_folder(ctx, entity, hard=False)
        if isinstance(entity, File) and self._locked(ctx, entity):
            return [f"File '{entity.name}' is locked"]

        entity.mark_deleted(ctx.user_id)
        self._commit()
        logger.info(f"Soft-deleted {entity.kind}-{entity.id} by user {ctx.user_id}")
        return []

    def hard_delete(self, ctx: ExecutionContext, entity: Entity) -> List[str]:
        """Remove rows and stored content. Links targeting the entity are left alone."""
        if isinstance(entity, Folder):
            return self._delete_folder(ctx, entity, hard=True)
        if isinstance(entity, Link):
            self._session.delete(entity)
            self._commit()
            logger.info(f"Destroyed link-{entity.id} by user {ctx.user_id}")
            return []
        if self._locked(ctx, entity):
            return [f"File '{entity.name}' is locked"]

        paths = [r.disk_path for r in entity.revisions]
        self._session.execute(sa_delete(Lock).where(Lock.file_id == entity.id))
        self._session.delete(entity)
        self._commit()
        self._delete_content(paths)
        logger.info(f"Destroyed file-{entity.id} by user {ctx.user_id}")
        return []

    def _delete_folder(self, ctx: ExecutionContext, folder: Folder, hard: bool) -> List[str]:
        if folder.system:
            return [f"Folder '{folder.title}' is a system folder and cannot be deleted"]

        folder_ids = [folder.id] + descendant_folder_ids(self._session, folder.id)
        folders = [self._session.get(Folder, fid) for fid in folder_ids]
        files = list(self._session.execute(select(File).where(File.folder_id.in_(folder_ids))).scalars())
        links = list(self._session.execute(select(Link).where(Link.folder_id.in_(folder_ids))).scalars())

        errors = [f"Folder '{f.title}' is locked" for f in folders if self._locked(ctx, f)]
        errors += [f"File '{f.name}' is locked" for f in files if self._locked(ctx, f)]
        if errors:
            return errors

        if not hard:
            now = utcnow()
            folder.mark_deleted(ctx.user_id, now)
            for entity in [*folders[1:], *files, *links]:
                if not entity.deleted:
                    entity.mark_deleted(ctx.user_id, now)
            self._commit()
            logger.info(
                f"Soft-deleted folder-{folder.id} with {len(folders) - 1} subfolders, "
                f"{len(files)} files, {len(links)} links by user {ctx.user_id}"
            )
            return []

        file_ids = [f.id for f in files]
        paths = [r.disk_path for f in files for r in f.revisions]
        try:
            self._session.execute(
                sa_delete(Lock).where(or_(Lock.folder_id.in_(folder_ids), Lock.file_id.in_(file_ids)))
            )
            for entity in [*links, *files, *reversed(folders)]:
                self._session.delete(entity)
            self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            raise
        self._delete_content(paths)
        logger.info(
            f"Destroyed folder-{folder.id} with {len(folders) - 1} subfolders, "
            f"{len(files)} files by user {ctx.user_id}"
        )
        return []

    def _delete_content(self, paths: List[str]) -> None:
        for path in paths:
            try:
                self._storage.delete(path)
            except OSError as e:
                logger.error(f"Failed to delete stored content {path}: {e}")

    # -------------------------------------------------------------------
    # Restore
    # -------------------------------------------------------------------

    def restore(self, ctx: ExecutionContext, entity: Entity) -> List[str]:
        """
        Clear the deleted flag of ``entity`` only; descendants stay deleted.

        Re-validates uniqueness, parent existence and tree shape first.
        """
        if not entity.deleted:
            return []
        errors = self.validate(entity, check_parent_deleted=False)
        if errors:
            return errors
        entity.clear_deleted()
        self._commit()
        logger.info(f"Restored {entity.kind}-{entity.id} by user {ctx.user_id}")
        return []

    # -------------------------------------------------------------------
    # Access audit
    # -------------------------------------------------------------------

    def record_access(self, ctx: ExecutionContext, files: List[File], action: int) -> List[FileRevisionAccess]:
        """One audit row per file, against its last revision."""
        audited = [(f, f.last_revision) for f in files if f.last_revision is not None]
        records = [
            FileRevisionAccess(user_id=ctx.user_id, revision_id=rev.id, file_id=f.id, action=action)
            for f, rev in audited
        ]
        self._session.add_all(records)
        self._commit()

        for record, (file, _) in zip(records, audited):
            log(log_document_access(
                record.action_name, file.id, record.revision_id, ctx.user_id, file.project_id,
                execution_id=ctx.execution_id,
            ))
        return records
