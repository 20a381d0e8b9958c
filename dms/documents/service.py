"""
DMS Document Service — Per-request facade over the document-management core.

Wires EntityStore, LockManager, TreeOperations and BulkOperationEngine to one
session and the host's collaborators, checks the route-level capability of
each action and turns every DMSError into an OperationResult.

Usage:
    service = DocumentService(session, storage, permissions, permissions, mailer, config.documents)
    ctx = ExecutionContext(user_id=2, username="jsmith", project_id=1)
    result = service.entries_operation(ctx, "delete", ["folder-3", "file-7"])
    if result.status == "error":
        ...
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from dms.documents.bulk import ArchiveConsumer, BulkOperationEngine, OperationResult
from dms.documents.interfaces import (
    FILE_DELETE,
    FILE_MANIPULATION,
    FOLDER_MANIPULATION,
    VIEW_FILES,
    VIEW_FOLDERS,
    Mailer,
    ModuleProvider,
    PermissionProvider,
    StorageBackend,
)
from dms.documents.locks import LockManager
from dms.documents.selection import SelectionItem, SelectionKind
from dms.documents.storage import LocalStorageBackend
from dms.documents.store import EntityStore
from dms.documents.tree import TreeOperations
from dms.engine.config import DMSConfig, DocumentsConfig
from dms.engine.context import ExecutionContext
from dms.engine.errors import (
    AlreadyLocked,
    DMSError,
    DMSValidationError,
    NotLocked,
)
from dms.security.permissions import require_capability

logger = logging.getLogger("dms.documents.service")


class DocumentService:
    """
    Entry point for one request.

    Every public method returns an OperationResult. Lock conflicts the user
    can ignore (already locked, not locked, root folder) are warnings; an
    unlock by someone other than the holder is an error.
    """

    def __init__(
        self,
        session: Session,
        storage: StorageBackend,
        permissions: PermissionProvider,
        modules: ModuleProvider,
        mailer: Mailer,
        config: Optional[DocumentsConfig] = None,
        temp_dir: Optional[str] = None,
    ):
        self._permissions = permissions
        self._config = config or DocumentsConfig()
        self.locks = LockManager(session, permissions)
        self.store = EntityStore(session, storage, self.locks)
        self.tree = TreeOperations(self.store, self.locks, permissions, modules, storage)
        self.bulk = BulkOperationEngine(self.store, storage, permissions, mailer, self._config, temp_dir)

    @classmethod
    def from_config(
        cls,
        session: Session,
        config: DMSConfig,
        permissions: PermissionProvider,
        mailer: Mailer,
        modules: Optional[ModuleProvider] = None,
    ) -> "DocumentService":
        """Build a service over local-disk storage from a loaded dms.yaml."""
        storage = LocalStorageBackend(config.storage.directory)
        return cls(
            session,
            storage,
            permissions,
            modules or permissions,
            mailer,
            config.documents,
            config.storage.temp_directory,
        )

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _run(self, ctx: ExecutionContext, action: str, fn: Callable[[], OperationResult]) -> OperationResult:
        try:
            return fn()
        except DMSError as e:
            logger.warning(f"{action} failed for user {ctx.user_id}: {e!r}")
            return OperationResult.failure(e)

    def _require(self, ctx: ExecutionContext, capability: str, object_type: str = "folders") -> None:
        require_capability(self._permissions, ctx, capability, ctx.project_id, object_type)

    def _folder_or_root(self, folder_id: Optional[int]):
        return self.store.find_visible_folder(folder_id) if folder_id is not None else None

    def _resolve_item(self, item_ref: str):
        item = SelectionItem.parse(item_ref)
        if item is None:
            raise DMSValidationError(f"Invalid entry '{item_ref}'")
        if item.kind == SelectionKind.FOLDER:
            return self.store.find_folder(item.id)
        if item.kind == SelectionKind.FILE:
            return self.store.find_file(item.id)
        return self.store.find_link(item.id)

    # -------------------------------------------------------------------
    # Browsing
    # -------------------------------------------------------------------

    def show(self, ctx: ExecutionContext, folder_id: Optional[int] = None) -> OperationResult:
        """One level of the hierarchy with its breadcrumb path and lock state."""
        def run() -> OperationResult:
            self._require(ctx, VIEW_FOLDERS)
            folder = self._folder_or_root(folder_id)
            listing = self.store.list_visible(ctx.project_id, folder)
            return OperationResult.notice(
                None,
                folder=folder,
                listing=listing,
                path=self.store.folder_path(folder),
                locked=self.locks.locked_for_user(ctx, folder) if folder is not None else False,
            )
        return self._run(ctx, "show", run)

    def trash(self, ctx: ExecutionContext) -> OperationResult:
        def run() -> OperationResult:
            self._require(ctx, FILE_DELETE)
            return OperationResult.notice(None, listing=self.store.list_trash(ctx.project_id))
        return self._run(ctx, "trash", run)

    # -------------------------------------------------------------------
    # Bulk entries
    # -------------------------------------------------------------------

    def entries_operation(
        self,
        ctx: ExecutionContext,
        verb: str,
        ids: Iterable[str],
        commit: bool = False,
        consumer: Optional[ArchiveConsumer] = None,
        email_params: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        """Run a bulk verb (download, email, delete, destroy, restore) on raw ``kind-id`` ids."""
        def run() -> OperationResult:
            self._require(ctx, VIEW_FILES, "files")
            return self.bulk.execute(ctx, verb, ids, commit=commit, consumer=consumer, email_params=email_params)
        return self._run(ctx, f"entries_{verb}", run)

    # -------------------------------------------------------------------
    # Folders
    # -------------------------------------------------------------------

    def create_folder(
        self,
        ctx: ExecutionContext,
        title: str,
        parent_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> OperationResult:
        def run() -> OperationResult:
            self._require(ctx, FOLDER_MANIPULATION)
            parent = self._folder_or_root(parent_id)
            folder = self.store.create_folder(ctx, ctx.project_id, title, parent, description)
            return OperationResult.notice("Folder created", folder=folder)
        return self._run(ctx, "create_folder", run)

    def save_folder(self, ctx: ExecutionContext, folder_id: int, **fields: Any) -> OperationResult:
        def run() -> OperationResult:
            self._require(ctx, FOLDER_MANIPULATION)
            folder = self.store.find_visible_folder(folder_id)
            if self.locks.locked_for_user(ctx, folder):
                raise DMSValidationError(f"Folder '{folder.title}' is locked", object_ref=f"folder-{folder.id}")
            self.store.update_folder(ctx, folder, **fields)
            return OperationResult.notice("Folder details were saved", folder=folder)
        return self._run(ctx, "save_folder", run)

    def delete_folder(self, ctx: ExecutionContext, folder_id: int, commit: bool = False) -> OperationResult:
        def run() -> OperationResult:
            self._require(ctx, FOLDER_MANIPULATION)
            folder = self.store.find_folder(folder_id)
            errors = self.store.delete(ctx, folder, commit)
            if errors:
                raise DMSValidationError("; ".join(errors), validation_errors=errors, object_ref=f"folder-{folder_id}")
            return OperationResult.notice("Folder deleted")
        return self._run(ctx, "delete_folder", run)

    def restore_folder(self, ctx: ExecutionContext, folder_id: int) -> OperationResult:
        def run() -> OperationResult:
            self._require(ctx, FOLDER_MANIPULATION)
            folder = self.store.find_folder(folder_id)
            errors = self.store.restore(ctx, folder)
            if errors:
                raise DMSValidationError("; ".join(errors), validation_errors=errors, object_ref=f"folder-{folder_id}")
            return OperationResult.notice("Folder restored", folder=folder)
        return self._run(ctx, "restore_folder", run)

    # -------------------------------------------------------------------
    # Locks
    # -------------------------------------------------------------------

    def _lock(self, ctx: ExecutionContext, entity) -> OperationResult:
        if entity is None:
            return OperationResult.warning(["The root folder cannot be locked"])
        try:
            self.locks.lock(ctx, entity)
        except AlreadyLocked as e:
            return OperationResult.warning([e.message])
        return OperationResult.notice(f"{entity.kind.capitalize()} locked")

    def _unlock(self, ctx: ExecutionContext, entity) -> OperationResult:
        if entity is None:
            return OperationResult.warning(["The root folder cannot be unlocked"])
        try:
            self.locks.unlock(ctx, entity)
        except NotLocked as e:
            return OperationResult.warning([e.message])
        return OperationResult.notice(f"{entity.kind.capitalize()} unlocked")

    def lock_folder(self, ctx: ExecutionContext, folder_id: Optional[int]) -> OperationResult:
        def run() -> OperationResult:
            self._require(ctx, FOLDER_MANIPULATION)
            return self._lock(ctx, self._folder_or_root(folder_id))
        return self._run(ctx, "lock_folder", run)

    def unlock_folder(self, ctx: ExecutionContext, folder_id: Optional[int]) -> OperationResult:
        def run() -> OperationResult:
            self._require(ctx, FOLDER_MANIPULATION)
            return self._unlock(ctx, self._folder_or_root(folder_id))
        return self._run(ctx, "unlock_folder", run)

    def lock_file(self, ctx: ExecutionContext, file_id: int) -> OperationResult:
        def run() -> OperationResult:
            self._require(ctx, FILE_MANIPULATION, "files")
            return self._lock(ctx, self.store.find_visible_file(file_id))
        return self._run(ctx, "lock_file", run)

    def unlock_file(self, ctx: ExecutionContext, file_id: int) -> OperationResult:
        def run() -> OperationResult:
            self._require(ctx, FILE_MANIPULATION, "files")
            return self._unlock(ctx, self.store.find_visible_file(file_id))
        return self._run(ctx, "unlock_file", run)

    # -------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------

    def _set_notification(self, ctx: ExecutionContext, folder_id: Optional[int], enabled: bool) -> OperationResult:
        self._require(ctx, FOLDER_MANIPULATION)
        folder = self._folder_or_root(folder_id)
        target = folder if folder is not None else self.store.find_project(ctx.project_id)
        state = "activated" if enabled else "deactivated"
        if not self.store.set_notification(target, enabled):
            return OperationResult.warning([f"Notifications are already {state}"])
        return OperationResult.notice(f"Notifications {state}")

    def notify_activate(self, ctx: ExecutionContext, folder_id: Optional[int] = None) -> OperationResult:
        return self._run(ctx, "notify_activate", lambda: self._set_notification(ctx, folder_id, True))

    def notify_deactivate(self, ctx: ExecutionContext, folder_id: Optional[int] = None) -> OperationResult:
        return self._run(ctx, "notify_deactivate", lambda: self._set_notification(ctx, folder_id, False))

    # -------------------------------------------------------------------
    # Tree
    # -------------------------------------------------------------------

    def move(
        self,
        ctx: ExecutionContext,
        item_ref: str,
        target_project_id: int,
        target_folder_id: Optional[int] = None,
    ) -> OperationResult:
        def run() -> OperationResult:
            item = self.tree.move(ctx, self._resolve_item(item_ref), target_project_id, target_folder_id)
            return OperationResult.notice(f"{item.kind.capitalize()} moved", item=item)
        return self._run(ctx, "move", run)

    def copy(
        self,
        ctx: ExecutionContext,
        item_ref: str,
        target_project_id: int,
        target_folder_id: Optional[int] = None,
    ) -> OperationResult:
        def run() -> OperationResult:
            item = self.tree.copy(ctx, self._resolve_item(item_ref), target_project_id, target_folder_id)
            return OperationResult.notice(f"{item.kind.capitalize()} copied", item=item)
        return self._run(ctx, "copy", run)

    def drop(self, ctx: ExecutionContext, drag_id: str, drop_id: str) -> OperationResult:
        def run() -> OperationResult:
            if not self.tree.drop(ctx, drag_id, drop_id):
                raise DMSValidationError(f"Could not move {drag_id} to {drop_id}", object_ref=drag_id)
            return OperationResult.notice(None)
        return self._run(ctx, "drop", run)
