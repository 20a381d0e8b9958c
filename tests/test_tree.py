"""Tests for dms.documents.tree — move, copy and drag-and-drop."""

import io

import pytest

from dms.documents.interfaces import ALL_CAPABILITIES, FILE_MANIPULATION, FORCE_FILE_UNLOCK
from dms.engine.errors import AccessDenied, DMSValidationError, NotFound, SameTargetError


def _stored_files(storage):
    return sorted(p for p in storage.root.rglob("*") if p.is_file())


@pytest.fixture
def cross_project(ctx, other_project, permissions):
    """Grant ``ctx`` the same capabilities in the second project."""
    permissions.add_member(ctx.user_id, other_project.id, ALL_CAPABILITIES - {FORCE_FILE_UNLOCK})
    return other_project


class TestMove:
    def test_move_file_to_folder(self, tree, ctx, project, make_folder, make_file):
        target = make_folder("Target")
        f = make_file("a.txt")
        tree.move(ctx, f, project.id, target.id)
        assert f.folder_id == target.id

    def test_same_target_changes_nothing(self, tree, ctx, project, make_folder, make_file):
        folder = make_folder("Docs")
        f = make_file("a.txt", folder)
        with pytest.raises(SameTargetError):
            tree.move(ctx, f, project.id, folder.id)
        assert f.folder_id == folder.id
        assert f.project_id == project.id

    def test_folder_into_descendant(self, tree, ctx, project, make_folder):
        a = make_folder("A")
        b = make_folder("B", parent=a)
        with pytest.raises(DMSValidationError, match="inside itself"):
            tree.move(ctx, a, project.id, b.id)
        assert a.parent_id is None

    def test_folder_into_itself(self, tree, ctx, project, make_folder):
        a = make_folder("A")
        with pytest.raises(DMSValidationError):
            tree.move(ctx, a, project.id, a.id)

    def test_locked_target(self, tree, locks, ctx, other_ctx, project, make_folder, make_file):
        target = make_folder("Target")
        f = make_file("a.txt")
        locks.lock(other_ctx, target)
        with pytest.raises(AccessDenied, match="is locked"):
            tree.move(ctx, f, project.id, target.id)
        assert f.folder_id is None

    def test_locked_item(self, tree, locks, ctx, other_ctx, project, make_folder, make_file):
        target = make_folder("Target")
        f = make_file("a.txt")
        locks.lock(other_ctx, f)
        with pytest.raises(AccessDenied):
            tree.move(ctx, f, project.id, target.id)

    def test_deleted_target(self, tree, store, ctx, project, make_folder, make_file):
        target = make_folder("Target")
        f = make_file("a.txt")
        store.delete(ctx, target)
        with pytest.raises(NotFound):
            tree.move(ctx, f, project.id, target.id)

    def test_target_folder_from_other_project(self, tree, ctx, cross_project, make_folder, make_file):
        target = make_folder("Target")
        with pytest.raises(DMSValidationError, match="does not belong"):
            tree.move(ctx, make_file("a.txt"), cross_project.id, target.id)

    def test_module_disabled_in_target(self, tree, ctx, permissions, cross_project, make_file):
        permissions.disable_module(cross_project.id)
        with pytest.raises(AccessDenied):
            tree.move(ctx, make_file("a.txt"), cross_project.id)

    def test_capability_required_in_target(self, tree, ctx, permissions, cross_project, make_file):
        permissions.revoke(ctx.user_id, cross_project.id, FILE_MANIPULATION)
        with pytest.raises(AccessDenied) as exc_info:
            tree.move(ctx, make_file("a.txt"), cross_project.id)
        assert exc_info.value.required_permission == FILE_MANIPULATION

    def test_move_folder_across_projects(self, tree, store, ctx, project, cross_project, make_folder, make_file):
        a = make_folder("A")
        b = make_folder("B", parent=a)
        f = make_file("f.txt", b)
        link = store.create_link(ctx, project.id, a, "url", "Home", external_url="https://example.net")

        tree.move(ctx, a, cross_project.id)
        assert all(e.project_id == cross_project.id for e in (a, b, f, link))
        assert [x.id for x in store.list_visible(cross_project.id).folders] == [a.id]
        assert store.list_visible(project.id).folders == []


class TestCopy:
    def test_copy_file_duplicates_content(self, tree, storage, ctx, project, make_folder, make_file):
        target = make_folder("Target")
        f = make_file("a.txt", content=b"payload")
        copy = tree.copy(ctx, f, project.id, target.id)

        assert copy.id != f.id
        assert copy.folder_id == target.id
        assert f.folder_id is None
        assert copy.last_revision.disk_path != f.last_revision.disk_path
        with storage.open(copy.last_revision.disk_path) as fh:
            assert fh.read() == b"payload"
        assert copy.last_revision.user_id == ctx.user_id

    def test_copy_keeps_version(self, tree, store, ctx, project, make_folder, make_file):
        f = make_file("a.txt")
        store.add_revision(ctx, f, io.BytesIO(b"v2"), major=True)
        copy = tree.copy(ctx, f, project.id, make_folder("Target").id)
        assert copy.last_revision.version == "2.0"
        assert len(copy.revisions) == 1

    def test_copy_folder_recursively(self, tree, store, ctx, project, make_folder, make_file):
        a = make_folder("A")
        b = make_folder("B", parent=a)
        make_file("f.txt", b, content=b"deep")
        target = make_folder("Target")

        root = tree.copy(ctx, a, project.id, target.id)
        assert root.parent_id == target.id
        sub = store.list_visible(project.id, root).folders
        assert [x.title for x in sub] == ["B"]
        files = store.list_visible(project.id, sub[0]).files
        assert [x.name for x in files] == ["f.txt"]
        assert b.parent_id == a.id

    def test_copy_skips_deleted_children(self, tree, store, ctx, project, make_folder, make_file):
        a = make_folder("A")
        gone = make_file("gone.txt", a)
        make_file("kept.txt", a)
        store.delete(ctx, gone)
        root = tree.copy(ctx, a, project.id, make_folder("Target").id)
        assert [x.name for x in store.list_visible(project.id, root).files] == ["kept.txt"]

    def test_name_collision_cleans_up(self, tree, storage, ctx, project, make_folder, make_file):
        target = make_folder("Target")
        make_file("a.txt", target)
        f = make_file("a.txt")
        before = _stored_files(storage)

        with pytest.raises(DMSValidationError, match="already been taken"):
            tree.copy(ctx, f, project.id, target.id)
        assert _stored_files(storage) == before

    def test_copy_to_same_location(self, tree, ctx, project, make_file):
        with pytest.raises(SameTargetError):
            tree.copy(ctx, make_file("a.txt"), project.id)

    def test_copy_locked_item_allowed(self, tree, locks, ctx, other_ctx, project, make_folder, make_file):
        f = make_file("a.txt")
        locks.lock(other_ctx, f)
        assert tree.copy(ctx, f, project.id, make_folder("Target").id).name == "a.txt"


class TestDrop:
    def test_drop_file_into_folder(self, tree, ctx, make_folder, make_file):
        target = make_folder("Target")
        f = make_file("a.txt")
        assert tree.drop(ctx, f"file-{f.id}", f"folder-{target.id}") is True
        assert f.folder_id == target.id

    def test_drop_folder(self, tree, ctx, make_folder):
        a = make_folder("A")
        target = make_folder("Target")
        assert tree.drop(ctx, f"folder-{a.id}", f"folder-{target.id}") is True
        assert a.parent_id == target.id

    @pytest.mark.parametrize("drag, drop", [
        ("nonsense", "folder-1"),
        ("file-1", "file-2"),
        ("", ""),
    ])
    def test_malformed_ids(self, tree, ctx, drag, drop):
        assert tree.drop(ctx, drag, drop) is False

    def test_missing_entries(self, tree, ctx, make_folder):
        target = make_folder("Target")
        assert tree.drop(ctx, "file-999", f"folder-{target.id}") is False
        assert tree.drop(ctx, f"folder-{target.id}", "folder-999") is False

    def test_drop_link_kind_must_match(self, tree, store, ctx, project, make_folder):
        target = make_folder("Target")
        link = store.create_link(ctx, project.id, None, "url", "Home", external_url="https://example.net")
        assert tree.drop(ctx, f"folder-link-{link.id}", f"folder-{target.id}") is False
        assert link.folder_id is None
        assert tree.drop(ctx, f"url-link-{link.id}", f"folder-{target.id}") is True
        assert link.folder_id == target.id

    def test_rejected_move(self, tree, ctx, make_folder):
        a = make_folder("A")
        b = make_folder("B", parent=a)
        assert tree.drop(ctx, f"folder-{a.id}", f"folder-{b.id}") is False
        assert a.parent_id is None
