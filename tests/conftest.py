"""
DMS Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v

Every test gets a fresh in-memory SQLite database, a storage root under
tmp_path and a grant table with the documents module enabled for two
projects ("Alpha" and "Beta").
"""

from __future__ import annotations

import io
from unittest.mock import MagicMock

import pytest

from dms.documents.interfaces import ALL_CAPABILITIES, FORCE_FILE_UNLOCK


# ---------------------------------------------------------------------------
# Global singletons
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset cached config and the global file logger between tests."""
    import dms.engine.config as cfg_mod
    import dms.engine.logging as log_mod

    cfg_mod.reset_config()
    yield
    log_mod.shutdown_logging()
    cfg_mod.reset_config()


# ---------------------------------------------------------------------------
# Database & storage
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    from dms.db.session import init_db

    return init_db("sqlite://", create_tables=True)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def storage(tmp_path):
    from dms.documents.storage import LocalStorageBackend

    return LocalStorageBackend(str(tmp_path / "storage"))


@pytest.fixture
def project(session):
    from dms.db.models import Project

    p = Project(name="Alpha", identifier="alpha", notification=False, enabled_modules=["documents"])
    session.add(p)
    session.commit()
    return p


@pytest.fixture
def other_project(session):
    from dms.db.models import Project

    p = Project(name="Beta", identifier="beta", notification=False, enabled_modules=["documents"])
    session.add(p)
    session.commit()
    return p


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------

@pytest.fixture
def permissions(project, other_project):
    from dms.security.permissions import GrantTablePermissions

    p = GrantTablePermissions()
    p.enable_module(project.id)
    p.enable_module(other_project.id)
    return p


@pytest.fixture
def ctx(project, permissions):
    """Project member with every capability except force unlock."""
    from dms.engine.context import ExecutionContext

    permissions.add_member(2, project.id, ALL_CAPABILITIES - {FORCE_FILE_UNLOCK})
    return ExecutionContext(
        user_id=2,
        username="jsmith",
        project_id=project.id,
        full_name="John Smith",
        email="jsmith@example.net",
    )


@pytest.fixture
def other_ctx(project, permissions):
    """A second member with the same capabilities as ``ctx``."""
    from dms.engine.context import ExecutionContext

    permissions.add_member(3, project.id, ALL_CAPABILITIES - {FORCE_FILE_UNLOCK})
    return ExecutionContext(user_id=3, username="mdoe", project_id=project.id, full_name="Mary Doe")


@pytest.fixture
def viewer_ctx(project, permissions):
    """Member that may only look at folders and files."""
    from dms.documents.interfaces import VIEW_FILES, VIEW_FOLDERS
    from dms.engine.context import ExecutionContext

    permissions.add_member(4, project.id, {VIEW_FILES, VIEW_FOLDERS})
    return ExecutionContext(user_id=4, username="viewer", project_id=project.id)


@pytest.fixture
def admin_ctx(project):
    from dms.engine.context import ExecutionContext

    return ExecutionContext(user_id=1, username="admin", project_id=project.id, is_admin=True)


# ---------------------------------------------------------------------------
# Collaborators & core objects
# ---------------------------------------------------------------------------

@pytest.fixture
def mailer():
    m = MagicMock()
    m.notify_files_deleted.return_value = []
    return m


@pytest.fixture
def documents_config():
    from dms.engine.config import DocumentsConfig

    return DocumentsConfig()


@pytest.fixture
def temp_dir(tmp_path):
    d = tmp_path / "tmp"
    d.mkdir()
    return d


@pytest.fixture
def service(session, storage, permissions, mailer, documents_config, temp_dir):
    from dms.documents.service import DocumentService

    return DocumentService(session, storage, permissions, permissions, mailer, documents_config, str(temp_dir))


@pytest.fixture
def store(service):
    return service.store


@pytest.fixture
def locks(service):
    return service.locks


@pytest.fixture
def tree(service):
    return service.tree


@pytest.fixture
def engine(service):
    return service.bulk


@pytest.fixture
def make_folder(store, ctx, project):
    def _make(title, parent=None, project_id=None):
        return store.create_folder(ctx, project_id or project.id, title, parent)
    return _make


@pytest.fixture
def make_file(store, ctx, project):
    def _make(name, folder=None, content=b"content", project_id=None):
        return store.create_file(ctx, project_id or project.id, folder, name, io.BytesIO(content))
    return _make
