"""
DMS Error Hierarchy — Structured exceptions for document-management failures.

Every error carries its message plus arbitrary keyword context (user_id,
project_id, object_ref, ...) and serializes to JSON for the audit log files.

Hierarchy:
    DMSError
    ├── DMSSecurityError
    │   └── AccessDenied         — Capability check failed
    ├── NotFound                 — Referenced entity missing
    │   └── FileNotFound         — File invisible or without stored content
    ├── DMSValidationError       — Entity-level field errors
    ├── LockError
    │   ├── AlreadyLocked
    │   ├── NotLocked
    │   └── NotLockHolder
    ├── SameTargetError          — Move/copy to the item's own location
    ├── ArchiveError
    │   ├── MaxFileSizeExceeded
    │   └── TooManyFiles
    ├── DMSConfigError
    └── NoSelection              — Warning carrier, empty selection
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class DMSError(Exception):
    """
    Base error for all DMS failures.
    All context is kept serializable so it can be written to the JSONL logs.
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.object_ref: Optional[str] = context.get("object_ref")
        self.user_id: Optional[int] = context.get("user_id")
        self.project_id: Optional[int] = context.get("project_id")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to JSON-compatible dict for logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "object_ref": self.object_ref,
            "user_id": self.user_id,
            "project_id": self.project_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("object_ref", "user_id", "project_id")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.object_ref:
            parts.append(f"object_ref={self.object_ref}")
        if self.user_id is not None:
            parts.append(f"user_id={self.user_id}")
        return " | ".join(parts)


class DMSSecurityError(DMSError):
    """Base for permission failures. Logged to the security log files."""

    def __init__(self, message: str, **context: Any):
        self.required_permission: Optional[str] = context.get("required_permission")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["required_permission"] = self.required_permission
        return d


class AccessDenied(DMSSecurityError):
    """The acting user lacks a capability in the relevant project."""
    pass


class NotFound(DMSError):
    """A referenced folder, file, link or revision does not exist."""

    def __init__(self, message: str, **context: Any):
        self.entity_kind: Optional[str] = context.get("entity_kind")
        self.entity_id: Optional[int] = context.get("entity_id")
        super().__init__(message, **context)


class FileNotFound(NotFound):
    """File is not visible, has no last revision, or its content is missing."""
    pass


class DMSValidationError(DMSError):
    """
    Entity validation failed (title uniqueness, tree constraints, locks).
    Includes the list of human-readable validation errors.
    """

    def __init__(self, message: str, **context: Any):
        self.validation_errors: List[str] = list(context.get("validation_errors") or [message])
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class LockError(DMSError):
    """Lock state conflict."""
    pass


class AlreadyLocked(LockError):
    pass


class NotLocked(LockError):
    pass


class NotLockHolder(LockError):
    """Only the user holding the lock (or a force-unlock holder) may release it."""

    def __init__(self, message: str, **context: Any):
        self.holder_id: Optional[int] = context.get("holder_id")
        super().__init__(message, **context)


class SameTargetError(DMSError):
    """Move/copy target is the item's current project and folder."""
    pass


class ArchiveError(DMSError):
    """Archive assembly exceeded a configured limit."""
    pass


class MaxFileSizeExceeded(ArchiveError):
    def __init__(self, message: str, **context: Any):
        self.size_bytes: Optional[int] = context.get("size_bytes")
        self.limit_bytes: Optional[int] = context.get("limit_bytes")
        super().__init__(message, **context)


class TooManyFiles(ArchiveError):
    def __init__(self, message: str, **context: Any):
        self.file_count: Optional[int] = context.get("file_count")
        self.limit: Optional[int] = context.get("limit")
        super().__init__(message, **context)


class DMSConfigError(DMSError):
    """Configuration error — invalid dms.yaml."""
    pass


class NoSelection(DMSError):
    """No entries were selected. Reported as a warning, never as a failure."""
    pass
