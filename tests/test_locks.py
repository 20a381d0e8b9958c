"""Tests for dms.documents.locks — LockManager state machine and inheritance."""

from unittest.mock import patch

import pytest

from dms.documents.interfaces import FORCE_FILE_UNLOCK
from dms.documents.locks import LockManager
from dms.engine.errors import AlreadyLocked, NotLocked, NotLockHolder


class TestLockUnlock:
    def test_lock_and_unlock(self, locks, ctx, make_file):
        f = make_file("a.txt")
        lock = locks.lock(ctx, f)
        assert lock.object_ref == f"file-{f.id}"
        assert locks.is_locked(f)
        assert locks.lock_holder(f) == ctx.user_id

        locks.unlock(ctx, f)
        assert not locks.is_locked(f)
        assert locks.get_lock(f) is None

    def test_lock_is_exclusive(self, locks, ctx, other_ctx, make_folder):
        folder = make_folder("A")
        locks.lock(ctx, folder)
        with pytest.raises(AlreadyLocked) as exc_info:
            locks.lock(other_ctx, folder)
        assert exc_info.value.context["holder_id"] == ctx.user_id
        assert locks.lock_holder(folder) == ctx.user_id

    def test_relock_by_holder_fails(self, locks, ctx, make_file):
        f = make_file("a.txt")
        locks.lock(ctx, f)
        with pytest.raises(AlreadyLocked):
            locks.lock(ctx, f)

    def test_unlock_not_locked(self, locks, ctx, make_file):
        with pytest.raises(NotLocked):
            locks.unlock(ctx, make_file("a.txt"))

    def test_unlock_by_other_user_refused(self, locks, ctx, other_ctx, make_file):
        f = make_file("a.txt")
        locks.lock(ctx, f)
        with pytest.raises(NotLockHolder) as exc_info:
            locks.unlock(other_ctx, f)
        assert exc_info.value.holder_id == ctx.user_id
        assert locks.lock_holder(f) == ctx.user_id

    def test_force_unlock_capability(self, locks, ctx, other_ctx, project, permissions, make_file):
        f = make_file("a.txt")
        locks.lock(ctx, f)
        permissions.grant(other_ctx.user_id, project.id, FORCE_FILE_UNLOCK)
        locks.unlock(other_ctx, f)
        assert not locks.is_locked(f)

    def test_admin_can_unlock(self, locks, ctx, admin_ctx, make_file):
        f = make_file("a.txt")
        locks.lock(ctx, f)
        locks.unlock(admin_ctx, f)
        assert locks.get_lock(f) is None


class TestInheritedLocks:
    def test_folder_lock_applies_to_descendants(self, locks, ctx, other_ctx, make_folder, make_file):
        a = make_folder("A")
        b = make_folder("B", parent=a)
        f = make_file("f.txt", b)
        locks.lock(ctx, a)

        assert locks.effective_lock(f).folder_id == a.id
        assert locks.get_lock(f) is None
        assert locks.locked_for_user(other_ctx, f) is True
        assert locks.locked_for_user(ctx, f) is False
        assert locks.locked_for_user(other_ctx, b) is True

    def test_cannot_lock_inside_locked_folder(self, locks, ctx, other_ctx, make_folder, make_file):
        a = make_folder("A")
        f = make_file("f.txt", a)
        locks.lock(ctx, a)
        with pytest.raises(AlreadyLocked):
            locks.lock(other_ctx, f)

    def test_unlock_requires_own_lock(self, locks, ctx, make_folder, make_file):
        a = make_folder("A")
        f = make_file("f.txt", a)
        locks.lock(ctx, a)
        with pytest.raises(NotLocked):
            locks.unlock(ctx, f)

    def test_siblings_unaffected(self, locks, ctx, other_ctx, make_folder):
        a = make_folder("A")
        b = make_folder("B")
        locks.lock(ctx, a)
        assert locks.locked_for_user(other_ctx, b) is False


class TestConcurrentLock:
    def test_losing_insert_reports_already_locked(self, session, permissions, locks, ctx, other_ctx, make_folder):
        folder = make_folder("A")
        locks.lock(ctx, folder)

        racer = LockManager(session, permissions)
        with patch.object(racer, "effective_lock", return_value=None):
            with pytest.raises(AlreadyLocked):
                racer.lock(other_ctx, folder)

        assert locks.lock_holder(folder) == ctx.user_id
