"""Unit tests for dms.engine.logging — FileLogger, entry builders, global helpers."""

import json
from datetime import date

from dms.engine.logging import (
    OBJECT_TYPE_CATEGORIES,
    FileLogger,
    LogEntry,
    get_file_logger,
    init_logging,
    log,
    log_bulk_operation,
    log_document_access,
    log_lock_event,
    log_security_event,
    shutdown_logging,
)


class TestFileLogger:
    def test_creates_category_directories(self, tmp_path):
        FileLogger(str(tmp_path))
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                assert (tmp_path / obj_type / cat).is_dir()

    def test_write_appends_jsonl(self, tmp_path):
        fl = FileLogger(str(tmp_path))
        fl.write(LogEntry("folders", "execution", {"event": "a"}))
        fl.write(LogEntry("folders", "execution", {"event": "b"}))

        path = tmp_path / "folders" / "execution" / f"{date.today().isoformat()}.jsonl"
        lines = path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["event"] for line in lines] == ["a", "b"]

    def test_query_filters_and_limit(self, tmp_path):
        fl = FileLogger(str(tmp_path))
        for i in range(5):
            fl.write(LogEntry("system", "execution", {"event": "e", "user_id": i % 2}))
        assert len(fl.query("system", "execution", filters={"user_id": 1})) == 2
        assert len(fl.query("system", "execution", limit=3)) == 3

    def test_query_skips_corrupt_lines(self, tmp_path):
        fl = FileLogger(str(tmp_path))
        path = tmp_path / "system" / "execution" / f"{date.today().isoformat()}.jsonl"
        path.write_text('{"event": "ok"}\nnot json\n\n', encoding="utf-8")
        assert fl.query("system", "execution") == [{"event": "ok"}]

    def test_query_unknown_type_is_empty(self, tmp_path):
        assert FileLogger(str(tmp_path)).query("nothing", "execution") == []


class TestEntryBuilders:
    def test_document_access(self):
        entry = log_document_access("download", file_id=7, revision_id=12, user_id=2, project_id=1)
        assert (entry.object_type, entry.category) == ("files", "access")
        assert entry.data["event"] == "file_download"
        assert entry.data["object_ref"] == "file-7"
        assert entry.data["revision_id"] == 12

    def test_bulk_operation_archive_verbs(self):
        entry = log_bulk_operation("email", "notice", user_id=2, project_id=1, counts={"files": 3})
        assert entry.object_type == "archives"
        assert entry.data["counts"] == {"files": 3}
        assert entry.data["level"] == "INFO"

    def test_bulk_operation_error(self):
        entry = log_bulk_operation("delete", "error", user_id=2, project_id=1, error="boom")
        assert entry.object_type == "system"
        assert entry.data["level"] == "ERROR"
        assert entry.data["error"] == "boom"
        assert "counts" not in entry.data

    def test_lock_event(self):
        entry = log_lock_event("unlock_denied", "file-7", user_id=3, project_id=1, holder_id=2)
        assert entry.object_type == "locks"
        assert entry.data["holder_id"] == 2

    def test_security_event_unknown_type_goes_to_system(self):
        entry = log_security_event("access_denied", "entries", "widgets", "view_files", 2, 1)
        assert (entry.object_type, entry.category) == ("system", "security")
        assert entry.data["permission_needed"] == "view_files"

    def test_to_json_is_compact(self):
        assert LogEntry("system", "execution", {"a": 1}).to_json() == '{"a":1}'


class TestGlobalLogger:
    def test_log_without_init_returns_false(self):
        shutdown_logging()
        assert log(LogEntry("system", "execution", {"event": "e"})) is False

    def test_init_and_log(self, tmp_path):
        fl = init_logging(str(tmp_path))
        assert get_file_logger() is fl
        assert log(log_lock_event("lock", "folder-1", user_id=2, project_id=1)) is True
        assert fl.query("locks", "execution")[0]["event"] == "lock"

    def test_shutdown_clears_logger(self, tmp_path):
        init_logging(str(tmp_path))
        shutdown_logging()
        assert get_file_logger() is None
