"""
DMS Logging — Structured JSON file-based audit and security logging.

Implements:
- FileLogger: Per-object-type, per-category JSONL files (daily files)
- Log entry builders for document access, bulk operations, locks and denials
- Global init_logging() / log() helpers

Layout: {log_dir}/{object_type}/{category}/{YYYY-MM-DD}.jsonl

Operational messages go through the stdlib ``logging`` module
(``logging.getLogger("dms.<module>")``); the files written here are the
queryable audit trail.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("dms.engine.logging")

# Valid object types and their permitted categories
OBJECT_TYPE_CATEGORIES = {
    "folders": ["execution", "security"],
    "files": ["execution", "security", "access"],
    "links": ["execution", "security"],
    "locks": ["execution", "security"],
    "archives": ["execution", "security", "access"],
    "system": ["execution", "security"],
}


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        self.object_type = object_type
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Writes structured JSON log entries to per-object-type, per-category files.

    Thread-safe — uses a lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / obj_type / cat).mkdir(parents=True, exist_ok=True)

    def write(self, entry: LogEntry) -> None:
        """Write a single log entry to the appropriate file."""
        file_path = self._resolve_path(entry.object_type, entry.category)
        with self._file_locks[str(file_path)]:
            with open(file_path, "a", encoding="utf-8") as f:
                f.write(entry.to_json())
                f.write("\n")

    def _resolve_path(self, object_type: str, category: str) -> Path:
        today = date.today().isoformat()
        path = self._log_dir / object_type / category
        path.mkdir(parents=True, exist_ok=True)
        return path / f"{today}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def query(
        self,
        object_type: str,
        category: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Query log entries for a given object_type/category.

        Args:
            filters: Exact-match filters on top-level keys of the entries.
            limit: Max number of entries to return.

        Returns:
            List of parsed entries, chronological within the date range.
        """
        if end_date is None:
            end_date = date.today()
        if start_date is None:
            start_date = end_date - timedelta(days=7)

        base = self._log_dir / object_type / category
        if not base.exists():
            return []

        results: List[Dict[str, Any]] = []
        current = start_date
        while current <= end_date and len(results) < limit:
            file_path = base / f"{current.isoformat()}.jsonl"
            if file_path.exists():
                results.extend(self._read_jsonl(file_path, filters, limit - len(results)))
            current += timedelta(days=1)
        return results

    @staticmethod
    def _read_jsonl(
        path: Path,
        filters: Optional[Dict[str, Any]],
        remaining: int,
    ) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if filters and not all(data.get(k) == v for k, v in filters.items()):
                        continue
                    entries.append(data)
                    if len(entries) >= remaining:
                        break
        except OSError as exc:
            logger.warning("Could not read log file %s: %s", path, exc)
        return entries


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    object_ref: str,
    execution_id: Optional[str] = None,
    user_id: Optional[Any] = None,
    project_id: Optional[Any] = None,
    **extra: Any,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
        "object_ref": object_ref,
    }
    if execution_id:
        entry["execution_id"] = execution_id
    if user_id is not None:
        entry["user_id"] = user_id
    if project_id is not None:
        entry["project_id"] = project_id
    entry.update(extra)
    return entry


def log_document_access(
    action: str,
    file_id: int,
    revision_id: int,
    user_id: Any,
    project_id: Any,
    execution_id: Optional[str] = None,
) -> LogEntry:
    """Build a file access entry (download/email), mirrors the audit table."""
    data = _base_entry(
        event=f"file_{action}",
        level="INFO",
        object_ref=f"file-{file_id}",
        execution_id=execution_id,
        user_id=user_id,
        project_id=project_id,
        revision_id=revision_id,
        action=action,
    )
    return LogEntry("files", "access", data)


def log_bulk_operation(
    verb: str,
    status: str,
    user_id: Any,
    project_id: Any,
    execution_id: Optional[str] = None,
    counts: Optional[Dict[str, int]] = None,
    messages: Optional[List[str]] = None,
    error: Optional[str] = None,
) -> LogEntry:
    """Build a bulk operation outcome entry."""
    data = _base_entry(
        event=f"entries_{verb}",
        level="ERROR" if status == "error" else "INFO",
        object_ref="entries",
        execution_id=execution_id,
        user_id=user_id,
        project_id=project_id,
        status=status,
    )
    if counts:
        data["counts"] = counts
    if messages:
        data["messages"] = messages
    if error:
        data["error"] = error
    return LogEntry("archives" if verb in ("download", "email") else "system", "execution", data)


def log_lock_event(
    event: str,
    object_ref: str,
    user_id: Any,
    project_id: Any,
    execution_id: Optional[str] = None,
    holder_id: Optional[Any] = None,
) -> LogEntry:
    """Build a lock/unlock entry."""
    data = _base_entry(
        event=event,
        level="INFO",
        object_ref=object_ref,
        execution_id=execution_id,
        user_id=user_id,
        project_id=project_id,
    )
    if holder_id is not None:
        data["holder_id"] = holder_id
    return LogEntry("locks", "execution", data)


def log_security_event(
    event: str,
    object_ref: str,
    object_type: str,
    permission_needed: str,
    user_id: Any,
    project_id: Any,
    execution_id: Optional[str] = None,
    level: str = "WARNING",
) -> LogEntry:
    """Build a security event entry (access denied)."""
    data = _base_entry(
        event=event,
        level=level,
        object_ref=object_ref,
        execution_id=execution_id,
        user_id=user_id,
        project_id=project_id,
        object_type=object_type,
        permission_needed=permission_needed,
    )
    return LogEntry(object_type if object_type in OBJECT_TYPE_CATEGORIES else "system", "security", data)


# ---------------------------------------------------------------------------
# Convenience: Global File Logger
# ---------------------------------------------------------------------------

_file_logger: Optional[FileLogger] = None


def init_logging(log_dir: str = "logs", level: str = "INFO") -> FileLogger:
    """Initialize the global file logger and the ``dms`` stdlib logger level."""
    global _file_logger
    logging.getLogger("dms").setLevel(level)
    _file_logger = FileLogger(log_dir=log_dir)
    return _file_logger


def get_file_logger() -> Optional[FileLogger]:
    return _file_logger


def log(entry: LogEntry) -> bool:
    """Write an entry through the global file logger. Returns False if not initialized."""
    if _file_logger is None:
        logger.debug("File logger not initialized — %s entry dropped", entry.data.get("event"))
        return False
    try:
        _file_logger.write(entry)
    except OSError as e:
        logger.error(f"Log write error: {e}")
        return False
    return True


def shutdown_logging() -> None:
    global _file_logger
    _file_logger = None
