"""
DMS Bulk Operation Engine — delete/destroy/restore/download/email over a selection.

Every entry point returns an OperationResult:

    notice   — everything succeeded
    warning  — partial success or informational messages (not deleted files,
               notified recipients, restore validation failures, empty selection)
    error    — terminal failure; ``error`` holds the DMSError that stopped it

Failure policy:
- delete checks the capability of each entity kind before mutating it
  (folder_manipulation for folders and folder links, file_delete for files,
  file links and url links). Kinds already processed are not rolled back.
- the first folder that fails to delete ends the operation with an error.
- files keep going: each lands in "deleted" or "not deleted".
- deletion notifications never fail the operation.
- download/email abort on the first missing or forbidden entry and always
  remove the temporary archive.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ValidationError, field_validator

from dms.db.models import File, FileRevisionAccess, Project
from dms.documents.archive import ArchiveBuilder
from dms.documents.interfaces import (
    EMAIL_DOCUMENTS,
    FILE_DELETE,
    FOLDER_MANIPULATION,
    Mailer,
    PermissionProvider,
    StorageBackend,
)
from dms.documents.selection import parse_selection
from dms.documents.storage import safe_filename
from dms.engine.config import DocumentsConfig
from dms.engine.context import ExecutionContext
from dms.engine.errors import (
    DMSError,
    DMSValidationError,
    FileNotFound,
    MaxFileSizeExceeded,
    NoSelection,
    NotFound,
)
from dms.engine.logging import log, log_bulk_operation
from dms.security.permissions import require_capability

logger = logging.getLogger("dms.documents.bulk")

NOTICE = "notice"
WARNING = "warning"
ERROR = "error"

VERBS = ("download", "email", "delete", "destroy", "restore")

# consumer(artifact_path, download_file_name)
ArchiveConsumer = Callable[[Any, str], None]


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass
class OperationResult:
    status: str = NOTICE
    messages: List[str] = field(default_factory=list)
    error: Optional[DMSError] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def notice(cls, message: Optional[str] = None, **payload: Any) -> "OperationResult":
        return cls(NOTICE, [message] if message else [], None, payload)

    @classmethod
    def warning(cls, messages: List[str], error: Optional[DMSError] = None, **payload: Any) -> "OperationResult":
        return cls(WARNING, list(messages), error, payload)

    @classmethod
    def failure(cls, error: DMSError, **payload: Any) -> "OperationResult":
        return cls(ERROR, [error.message], error, payload)

    @property
    def ok(self) -> bool:
        return self.status != ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "messages": self.messages,
            "error": self.error.to_dict() if self.error else None,
        }


class EmailParams(BaseModel):
    """User-supplied part of a documents email."""

    to: str
    cc: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Recipient cannot be blank")
        return v


def check_archive_size(size_bytes: int, config: DocumentsConfig) -> None:
    """Raise MaxFileSizeExceeded when an email archive is over the configured cap (0 = no cap)."""
    if config.max_email_archive_size_mb <= 0:
        return
    limit = config.max_email_archive_size_bytes
    if size_bytes > limit:
        raise MaxFileSizeExceeded(
            f"The archive is too big to be sent by email ({size_bytes} bytes > {limit} bytes)",
            size_bytes=size_bytes,
            limit_bytes=limit,
        )


def capped_list(names: Sequence[str], limit: int) -> str:
    """``a, b, c,...`` when over ``limit`` names, else ``a, b.``"""
    text = ", ".join(names[:limit])
    return text + (",..." if len(names) > limit else ".")


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class BulkOperationEngine:
    """Runs one bulk verb per call for the project in ``ctx.project_id``."""

    def __init__(
        self,
        store,
        storage: StorageBackend,
        permissions: PermissionProvider,
        mailer: Mailer,
        config: DocumentsConfig,
        temp_dir: Optional[str] = None,
    ):
        self._store = store
        self._storage = storage
        self._permissions = permissions
        self._mailer = mailer
        self._config = config
        self._temp_dir = temp_dir

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _require(self, ctx: ExecutionContext, capability: str, object_type: str) -> None:
        require_capability(self._permissions, ctx, capability, ctx.project_id, object_type)

    def _report(self, ctx: ExecutionContext, verb: str, result: OperationResult, **counts: int) -> OperationResult:
        log(log_bulk_operation(
            verb, result.status, ctx.user_id, ctx.project_id,
            execution_id=ctx.execution_id,
            counts=counts or None,
            messages=result.messages,
            error=result.error.error_type if result.error else None,
        ))
        if result.status == ERROR:
            logger.warning(f"entries_{verb} failed for user {ctx.user_id}: {result.error!r}")
        else:
            logger.info(f"entries_{verb} by user {ctx.user_id}: {result.status}")
        return result

    def _builder(self) -> ArchiveBuilder:
        return ArchiveBuilder(self._store, self._storage, self._permissions, self._config, self._temp_dir)

    def _assemble(self, ctx: ExecutionContext, builder: ArchiveBuilder, folders: Iterable[int], files: Iterable[int]) -> None:
        for folder_id in folders:
            folder = self._store.find_visible_folder(folder_id)
            parent = self._store.get_folder(folder.parent_id) if folder.parent_id else None
            builder.add_folder(folder, ctx, self._store.folder_path_str(parent) or None)
        for file_id in files:
            file = self._store.get_file(file_id)
            if file is None:
                raise FileNotFound(f"File {file_id} not found", entity_kind="file", entity_id=file_id)
            folder = self._store.get_folder(file.folder_id) if file.folder_id else None
            builder.add_file(file, ctx, self._store.folder_path_str(folder) or None)
        # Content is streamed without holding the read transaction open.
        self._store.session.commit()

    # -------------------------------------------------------------------
    # delete / destroy
    # -------------------------------------------------------------------

    def delete(
        self,
        ctx: ExecutionContext,
        folders: Iterable[int] = (),
        files: Iterable[int] = (),
        links: Iterable[int] = (),
        commit: bool = False,
    ) -> OperationResult:
        """Soft delete (or destroy with ``commit``) the selected folders, files and links."""
        verb = "destroy" if commit else "delete"
        try:
            result = self._delete(ctx, list(folders), list(files), list(links), commit)
        except DMSError as e:
            result = OperationResult.failure(e)
        return self._report(
            ctx, verb, result,
            deleted=len(result.payload.get("deleted", [])),
            not_deleted=len(result.payload.get("not_deleted", [])),
        )

    def _delete(self, ctx, folders: List[int], files: List[int], links: List[int], commit: bool) -> OperationResult:
        for folder_id in folders:
            self._require(ctx, FOLDER_MANIPULATION, "folders")
            folder = self._store.get_folder(folder_id)
            if folder is None:
                if not commit:
                    raise NotFound(f"Folder {folder_id} not found", entity_kind="folder", entity_id=folder_id)
                continue
            errors = self._store.delete(ctx, folder, commit)
            if errors:
                return OperationResult.failure(DMSValidationError(
                    "; ".join(errors),
                    validation_errors=errors,
                    object_ref=f"folder-{folder.id}",
                    user_id=ctx.user_id,
                    project_id=ctx.project_id,
                ))

        deleted: List[File] = []
        not_deleted: List[File] = []
        for file_id in files:
            self._require(ctx, FILE_DELETE, "files")
            file = self._store.get_file(file_id)
            if file is None:
                if not commit:
                    raise FileNotFound(f"File {file_id} not found", entity_kind="file", entity_id=file_id)
                continue
            if self._store.delete(ctx, file, commit):
                not_deleted.append(file)
            elif not commit:
                deleted.append(file)

        messages: List[str] = []
        if deleted:
            messages.extend(self._notify_deleted(ctx, deleted))
        if not_deleted:
            titles = [f.title for f in not_deleted]
            messages.append(
                "Some entries were not deleted: "
                + capped_list(titles, self._config.max_notification_receivers_info)
            )

        for link_id in links:
            link = self._store.get_link(link_id)
            if link is None:
                continue
            if link.target_type == "folder":
                self._require(ctx, FOLDER_MANIPULATION, "links")
            else:
                self._require(ctx, FILE_DELETE, "links")
            self._store.delete(ctx, link, commit)

        if messages:
            return OperationResult.warning(messages, deleted=deleted, not_deleted=not_deleted)
        return OperationResult.notice("Entries deleted", deleted=deleted, not_deleted=not_deleted)

    def _notify_deleted(self, ctx: ExecutionContext, files: List[File]) -> List[str]:
        try:
            project = self._store.find_project(ctx.project_id)
            recipients = list(self._mailer.notify_files_deleted(project, files) or [])
        except Exception as e:
            logger.error(f"Could not send email notifications: {e}")
            return []
        if not (self._config.show_notified_recipients and recipients):
            return []
        names = [getattr(r, "name", None) or str(r) for r in recipients]
        return [
            "Email notifications sent to: "
            + capped_list(names, self._config.max_notification_receivers_info)
        ]

    # -------------------------------------------------------------------
    # restore
    # -------------------------------------------------------------------

    def restore(
        self,
        ctx: ExecutionContext,
        folders: Iterable[int] = (),
        files: Iterable[int] = (),
        links: Iterable[int] = (),
    ) -> OperationResult:
        """Restore folders, then files, then links. Failures become warnings."""
        try:
            messages: List[str] = []
            for folder_id in folders:
                messages.extend(self._store.restore(ctx, self._store.find_folder(folder_id)))
            for file_id in files:
                messages.extend(self._store.restore(ctx, self._store.find_file(file_id)))
            for link_id in links:
                messages.extend(self._store.restore(ctx, self._store.find_link(link_id)))
            if messages:
                result = OperationResult.warning(messages)
            else:
                result = OperationResult.notice("Entries restored")
        except DMSError as e:
            result = OperationResult.failure(e)
        return self._report(ctx, "restore", result)

    # -------------------------------------------------------------------
    # download / email
    # -------------------------------------------------------------------

    def download_name(self, project: Project) -> str:
        stamp = datetime.now().strftime("%y%m%d%H%M%S")
        return safe_filename(f"{project.name}-{stamp}.zip")

    def download(
        self,
        ctx: ExecutionContext,
        folders: Iterable[int],
        files: Iterable[int],
        consumer: ArchiveConsumer,
    ) -> OperationResult:
        """
        Zip the selection and hand it to ``consumer(path, file_name)``.

        The archive is removed once the consumer returns.
        """
        builder = self._builder()
        try:
            project = self._store.find_project(ctx.project_id)
            builder.open()
            self._assemble(ctx, builder, folders, files)
            path = builder.finish()
            self._store.record_access(ctx, builder.files, FileRevisionAccess.DOWNLOAD_ACTION)
            name = self.download_name(project)
            consumer(path, name)
            result = OperationResult.notice(None, file_name=name, files=builder.files)
        except DMSError as e:
            result = OperationResult.failure(e)
        finally:
            builder.close()
        return self._report(ctx, "download", result, files=len(result.payload.get("files", [])))

    def email(
        self,
        ctx: ExecutionContext,
        folders: Iterable[int],
        files: Iterable[int],
        email_params: Dict[str, Any],
    ) -> OperationResult:
        """Zip the selection and send it through the mailer."""
        builder = self._builder()
        try:
            self._require(ctx, EMAIL_DOCUMENTS, "archives")
            try:
                params = EmailParams(**(email_params or {}))
            except ValidationError as e:
                errors = [err["msg"] for err in e.errors()]
                raise DMSValidationError("; ".join(errors), validation_errors=errors, user_id=ctx.user_id)

            project = self._store.find_project(ctx.project_id)
            builder.open()
            folders, files = list(folders), list(files)
            self._assemble(ctx, builder, folders, files)
            path = builder.finish()
            check_archive_size(os.path.getsize(path), self._config)
            self._store.record_access(ctx, builder.files, FileRevisionAccess.EMAIL_ACTION)

            mail = {
                "zipped_content": str(path),
                "folders": folders,
                "files": files,
                "to": params.to,
                "cc": params.cc,
                "subject": params.subject or f"{project.name} documents",
                "body": params.body,
                "from": self._config.default_email_from or ctx.sender,
                "reply_to": self._config.default_email_reply_to,
            }
            self._mailer.send_documents(project, mail, ctx)
            result = OperationResult.notice("Your email has been sent", files=builder.files)
        except DMSError as e:
            result = OperationResult.failure(e)
        finally:
            builder.close()
        return self._report(ctx, "email", result, files=len(result.payload.get("files", [])))

    # -------------------------------------------------------------------
    # Dispatcher
    # -------------------------------------------------------------------

    def execute(
        self,
        ctx: ExecutionContext,
        verb: str,
        ids: Iterable[str],
        commit: bool = False,
        consumer: Optional[ArchiveConsumer] = None,
        email_params: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        """Parse raw ``kind-id`` tokens and run ``verb`` on them."""
        if verb not in VERBS:
            return OperationResult.failure(DMSValidationError(f"Unknown operation '{verb}'", user_id=ctx.user_id))

        selection = parse_selection(ids)
        if selection.is_empty():
            message = "No entries selected"
            return self._report(ctx, verb, OperationResult.warning([message], error=NoSelection(message)))

        if verb in ("download", "email"):
            selection.resolve_link_targets(self._store)
            if verb == "download":
                if consumer is None:
                    raise ValueError("download requires an archive consumer")
                return self.download(ctx, selection.folders, selection.files, consumer)
            return self.email(ctx, selection.folders, selection.files, email_params or {})
        if verb == "restore":
            return self.restore(ctx, selection.folders, selection.files, selection.links)
        return self.delete(
            ctx, selection.folders, selection.files, selection.links,
            commit=commit or verb == "destroy",
        )
