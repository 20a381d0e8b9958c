"""
DMS Collaborator Interfaces — What the host application provides.

The document-management core does not own users, roles, projects or mail
delivery. It consumes them through these narrow protocols.
"""

from __future__ import annotations

from typing import Any, BinaryIO, Dict, Iterable, List, Protocol, runtime_checkable

from dms.engine.context import ExecutionContext

# Capabilities checked by the core
VIEW_FILES = "view_dmsf_files"
VIEW_FOLDERS = "view_dmsf_folders"
FOLDER_MANIPULATION = "folder_manipulation"
FILE_MANIPULATION = "file_manipulation"
FILE_DELETE = "file_delete"
EMAIL_DOCUMENTS = "email_documents"
FORCE_FILE_UNLOCK = "force_file_unlock"

ALL_CAPABILITIES = frozenset({
    VIEW_FILES,
    VIEW_FOLDERS,
    FOLDER_MANIPULATION,
    FILE_MANIPULATION,
    FILE_DELETE,
    EMAIL_DOCUMENTS,
    FORCE_FILE_UNLOCK,
})


@runtime_checkable
class PermissionProvider(Protocol):
    def allowed_to(self, ctx: ExecutionContext, capability: str, project_id: int) -> bool:
        ...

    def is_member(self, ctx: ExecutionContext, project_id: int) -> bool:
        ...


@runtime_checkable
class ModuleProvider(Protocol):
    def module_enabled(self, project_id: int, module: str) -> bool:
        ...


@runtime_checkable
class Mailer(Protocol):
    def send_documents(self, project: Any, email_params: Dict[str, Any], sender: ExecutionContext) -> None:
        ...

    def notify_files_deleted(self, project: Any, files: List[Any]) -> Iterable[Any]:
        """Notify watchers; returns the notified recipients."""
        ...


@runtime_checkable
class StorageBackend(Protocol):
    def exists(self, path: str) -> bool:
        ...

    def size(self, path: str) -> int:
        ...

    def delete(self, path: str) -> None:
        ...

    def open(self, path: str) -> BinaryIO:
        ...

    def write(self, path: str, data: BinaryIO) -> int:
        ...

    def copy(self, src: str, dst: str) -> None:
        ...
