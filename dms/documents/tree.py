"""
DMS Tree Operations — Move, copy and drag-and-drop across folders and projects.

Preconditions, checked in this order before anything is written:
    1. target folder visible                    → NotFound
       target folder in the target project      → DMSValidationError
    2. documents module enabled in the target project and
       file_manipulation (files, links) / folder_manipulation (folders)
       granted there                            → AccessDenied
    3. target differs from the current location → SameTargetError
    4. target folder not locked for the user    → AccessDenied
    5. (move) item not locked for the user      → AccessDenied
    6. folder not placed inside itself          → DMSValidationError
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from dms.db.models import DOCUMENTS_MODULE, File, FileRevision, Folder, Link
from dms.documents.hierarchy import descendant_folder_ids, is_descendant_or_self
from dms.documents.interfaces import (
    FILE_MANIPULATION,
    FOLDER_MANIPULATION,
    ModuleProvider,
    PermissionProvider,
    StorageBackend,
)
from dms.documents.storage import make_disk_path
from dms.engine.context import ExecutionContext
from dms.engine.errors import (
    AccessDenied,
    DMSError,
    DMSValidationError,
    FileNotFound,
    SameTargetError,
)

logger = logging.getLogger("dms.documents.tree")

Item = Union[Folder, File, Link]

_DRAG = re.compile(r"^(folder|file|folder-link|file-link|url-link)-(\d+)$")
_DROP = re.compile(r"^folder-(\d+)$")


def _location(item: Item) -> Optional[int]:
    return item.parent_id if isinstance(item, Folder) else item.folder_id


def _ref(item: Item) -> str:
    return f"{item.kind}-{item.id}"


class TreeOperations:

    def __init__(
        self,
        store,
        locks,
        permissions: PermissionProvider,
        modules: ModuleProvider,
        storage: StorageBackend,
    ):
        self._store = store
        self._session = store.session
        self._locks = locks
        self._permissions = permissions
        self._modules = modules
        self._storage = storage

    # -------------------------------------------------------------------
    # Preconditions
    # -------------------------------------------------------------------

    def _check_target(
        self,
        ctx: ExecutionContext,
        item: Item,
        target_project_id: int,
        target_folder_id: Optional[int],
        moving: bool,
    ) -> Optional[Folder]:
        target: Optional[Folder] = None
        if target_folder_id is not None:
            target = self._store.find_visible_folder(target_folder_id)
            if target.project_id != target_project_id:
                raise DMSValidationError(
                    f"Folder '{target.title}' does not belong to project {target_project_id}",
                    object_ref=_ref(item),
                    user_id=ctx.user_id,
                )
        else:
            self._store.find_project(target_project_id)

        capability = FOLDER_MANIPULATION if isinstance(item, Folder) else FILE_MANIPULATION
        if not (
            self._modules.module_enabled(target_project_id, DOCUMENTS_MODULE)
            and self._permissions.allowed_to(ctx, capability, target_project_id)
        ):
            raise AccessDenied(
                f"You are not authorized to place {item.kind} '{item.title}' in project {target_project_id}",
                object_ref=_ref(item),
                user_id=ctx.user_id,
                project_id=target_project_id,
                required_permission=capability,
            )

        if item.project_id == target_project_id and _location(item) == target_folder_id:
            raise SameTargetError(
                f"{item.kind.capitalize()} '{item.title}' is already in the target folder",
                object_ref=_ref(item),
                user_id=ctx.user_id,
            )

        if target is not None and self._locks.locked_for_user(ctx, target):
            raise AccessDenied(
                f"Folder '{target.title}' is locked",
                object_ref=_ref(target),
                user_id=ctx.user_id,
                project_id=target_project_id,
            )

        if moving and not isinstance(item, Link) and self._locks.locked_for_user(ctx, item):
            raise AccessDenied(
                f"{item.kind.capitalize()} '{item.title}' is locked",
                object_ref=_ref(item),
                user_id=ctx.user_id,
            )

        if isinstance(item, Folder) and is_descendant_or_self(self._session, item.id, target_folder_id):
            raise DMSValidationError(
                f"Folder '{item.title}' cannot be placed inside itself or one of its subfolders",
                object_ref=_ref(item),
                user_id=ctx.user_id,
            )
        return target

    def _save(self, ctx: ExecutionContext, item: Item) -> None:
        errors = self._store.validate(item)
        if errors:
            self._session.rollback()
            raise DMSValidationError(
                "; ".join(errors),
                validation_errors=errors,
                object_ref=_ref(item),
                user_id=ctx.user_id,
            )
        try:
            self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            raise

    # -------------------------------------------------------------------
    # Move
    # -------------------------------------------------------------------

    def move(
        self,
        ctx: ExecutionContext,
        item: Item,
        target_project_id: int,
        target_folder_id: Optional[int] = None,
    ) -> Item:
        """Reassign ``item`` to another folder and/or project. Folders carry their subtree."""
        self._check_target(ctx, item, target_project_id, target_folder_id, moving=True)

        if isinstance(item, Folder):
            item.parent_id = target_folder_id
            if item.project_id != target_project_id:
                self._move_subtree(item, target_project_id)
        else:
            item.folder_id = target_folder_id
        item.project_id = target_project_id

        self._save(ctx, item)
        logger.info(f"Moved {_ref(item)} to project {target_project_id} folder {target_folder_id} by user {ctx.user_id}")
        return item

    def _move_subtree(self, folder: Folder, project_id: int) -> None:
        folder_ids = [folder.id] + descendant_folder_ids(self._session, folder.id)
        for sub_id in folder_ids[1:]:
            self._session.get(Folder, sub_id).project_id = project_id
        for model in (File, Link):
            for entity in self._session.execute(select(model).where(model.folder_id.in_(folder_ids))).scalars():
                entity.project_id = project_id

    # -------------------------------------------------------------------
    # Copy
    # -------------------------------------------------------------------

    def copy(
        self,
        ctx: ExecutionContext,
        item: Item,
        target_project_id: int,
        target_folder_id: Optional[int] = None,
    ) -> Item:
        """
        Duplicate ``item`` into the target.

        Files get a copy of their last revision and its content. Folders are
        copied with their visible subfolders, files and links in one commit.
        """
        self._check_target(ctx, item, target_project_id, target_folder_id, moving=False)

        copied_paths: List[str] = []
        try:
            if isinstance(item, File):
                new_item = self._copy_file(ctx, item, target_project_id, target_folder_id, copied_paths)
            elif isinstance(item, Link):
                new_item = self._copy_link(ctx, item, target_project_id, target_folder_id)
            else:
                new_item = self._copy_folder(ctx, item, target_project_id, target_folder_id, copied_paths)
            errors = self._store.validate(new_item)
            if errors:
                raise DMSValidationError(
                    "; ".join(errors),
                    validation_errors=errors,
                    object_ref=_ref(item),
                    user_id=ctx.user_id,
                )
            self._session.commit()
        except (DMSError, SQLAlchemyError, OSError):
            self._session.rollback()
            for path in copied_paths:
                self._storage.delete(path)
            raise

        logger.info(f"Copied {_ref(item)} to {_ref(new_item)} in project {target_project_id} by user {ctx.user_id}")
        return new_item

    def _copy_file(
        self,
        ctx: ExecutionContext,
        file: File,
        project_id: int,
        folder_id: Optional[int],
        copied_paths: List[str],
    ) -> File:
        new_file = File(
            project_id=project_id,
            folder_id=folder_id,
            name=file.name,
            description=file.description,
            notification=False,
            deleted=False,
        )
        self._session.add(new_file)
        self._session.flush()

        revision = file.last_revision
        if revision is not None:
            if not self._storage.exists(revision.disk_path):
                raise FileNotFound(
                    f"Content of file '{file.name}' is missing",
                    entity_kind="file",
                    entity_id=file.id,
                )
            disk_path = make_disk_path(project_id, new_file.id, 1, file.name)
            self._storage.copy(revision.disk_path, disk_path)
            copied_paths.append(disk_path)
            new_file.revisions.append(FileRevision(
                name=revision.name,
                title=revision.title,
                disk_path=disk_path,
                size=revision.size,
                mime_type=revision.mime_type,
                major_version=revision.major_version,
                minor_version=revision.minor_version,
                comment=revision.comment,
                user_id=ctx.user_id,
                deleted=False,
            ))
        return new_file

    def _copy_link(self, ctx: ExecutionContext, link: Link, project_id: int, folder_id: Optional[int]) -> Link:
        new_link = Link(
            project_id=project_id,
            folder_id=folder_id,
            target_type=link.target_type,
            target_id=link.target_id,
            external_url=link.external_url,
            title=link.title,
            user_id=ctx.user_id,
            deleted=False,
        )
        self._session.add(new_link)
        return new_link

    def _copy_folder(
        self,
        ctx: ExecutionContext,
        folder: Folder,
        project_id: int,
        parent_id: Optional[int],
        copied_paths: List[str],
    ) -> Folder:
        def clone(src: Folder, dst_parent_id: Optional[int]) -> Folder:
            dst = Folder(
                project_id=project_id,
                parent_id=dst_parent_id,
                title=src.title,
                description=src.description,
                user_id=ctx.user_id,
                notification=False,
                system=False,
                deleted=False,
            )
            self._session.add(dst)
            self._session.flush()
            return dst

        root = clone(folder, parent_id)
        stack: List[Tuple[Folder, Folder]] = [(folder, root)]
        while stack:
            src, dst = stack.pop()
            listing = self._store.list_visible(src.project_id, src)
            for file in listing.files:
                self._copy_file(ctx, file, project_id, dst.id, copied_paths)
            for link in listing.links:
                self._copy_link(ctx, link, project_id, dst.id)
            for sub in listing.folders:
                stack.append((sub, clone(sub, dst.id)))
        return root

    # -------------------------------------------------------------------
    # Drag and drop
    # -------------------------------------------------------------------

    def drop(self, ctx: ExecutionContext, drag_id: str, drop_id: str) -> bool:
        """
        Move the dragged ``kind-id`` entry into the ``folder-id`` drop target.

        Returns False for malformed ids, missing entries or a rejected move.
        """
        drag = _DRAG.match(drag_id or "")
        drop = _DROP.match(drop_id or "")
        if drag is None or drop is None:
            return False

        target = self._store.get_folder(int(drop.group(1)))
        kind, item_id = drag.group(1), int(drag.group(2))
        if kind == "folder":
            item = self._store.get_folder(item_id)
        elif kind == "file":
            item = self._store.get_file(item_id)
        else:
            item = self._store.get_link(item_id)
            if item is not None and item.kind != kind:
                logger.info(f"Drop of {drag_id} rejected: link {item_id} is a {item.kind}")
                return False
        if target is None or item is None:
            return False

        try:
            self.move(ctx, item, target.project_id, target.id)
        except DMSError as e:
            logger.info(f"Drop of {drag_id} onto {drop_id} rejected: {e.message}")
            return False
        return True
