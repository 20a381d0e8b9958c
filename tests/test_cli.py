"""Tests for dms.cli — init, tree and trash commands against a SQLite file."""

import io

import pytest

from dms.cli import main


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "dms.yaml"
    path.write_text(
        "database:\n"
        f"  url: sqlite:///{tmp_path / 'dms.db'}\n"
        "storage:\n"
        f"  directory: {tmp_path / 'storage'}\n"
        "logging:\n"
        f"  directory: {tmp_path / 'logs'}\n",
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture
def seeded(config_file, tmp_path, capsys):
    """Initialized database with project 1 holding A/f.txt and a root file."""
    from dms.db.session import init_db
    from dms.documents.storage import LocalStorageBackend
    from dms.documents.store import EntityStore
    from dms.engine.context import ExecutionContext

    assert main(["--config", config_file, "init", "--project", "Alpha Docs"]) == 0
    capsys.readouterr()

    factory = init_db(f"sqlite:///{tmp_path / 'dms.db'}")
    ctx = ExecutionContext(user_id=1, username="admin", project_id=1)
    with factory() as session:
        store = EntityStore(session, LocalStorageBackend(str(tmp_path / "storage")))
        a = store.create_folder(ctx, 1, "A")
        store.create_file(ctx, 1, a, "f.txt", io.BytesIO(b"x"))
        root_file = store.create_file(ctx, 1, None, "readme.md", io.BytesIO(b"# hi"))
    return factory, ctx, root_file.id


class TestInit:
    def test_init_creates_tables_and_project(self, config_file, capsys):
        assert main(["--config", config_file, "init", "--project", "Alpha Docs"]) == 0
        out = capsys.readouterr().out
        assert "[OK] Database tables created" in out
        assert "Project 'Alpha Docs' created with id 1" in out

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("logging:\n  level: LOUD\n", encoding="utf-8")
        assert main(["--config", str(path), "init"]) == 1
        assert "[ERROR]" in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out


class TestTree:
    def test_tree_output(self, seeded, config_file, capsys):
        assert main(["--config", config_file, "tree", "1"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines == [
            "Alpha Docs (alpha-docs)",
            "  readme.md (v1.0)",
            "  A/",
            "    f.txt (v1.0)",
        ]

    def test_unknown_project(self, seeded, config_file, capsys):
        assert main(["--config", config_file, "tree", "99"]) == 1
        assert "[ERROR] Project 99 not found" in capsys.readouterr().out


class TestTrash:
    def test_empty_trash(self, seeded, config_file, capsys):
        assert main(["--config", config_file, "trash", "1"]) == 0
        assert "Trash of 'Alpha Docs' is empty" in capsys.readouterr().out

    def test_lists_deleted(self, seeded, config_file, tmp_path, capsys):
        factory, ctx, file_id = seeded
        from dms.documents.storage import LocalStorageBackend
        from dms.documents.store import EntityStore

        with factory() as session:
            store = EntityStore(session, LocalStorageBackend(str(tmp_path / "storage")))
            store.delete(ctx, store.find_file(file_id))

        assert main(["--config", config_file, "trash", "1"]) == 0
        out = capsys.readouterr().out
        assert out.startswith(f"file-{file_id}\treadme.md\t")
