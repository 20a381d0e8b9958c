"""
DMS Lock Manager — Exclusive folder/file locks.

State machine per lockable entity:

    Unlocked ──lock(user)──▶ Locked(user) ──unlock(holder | force)──▶ Unlocked

The persisted Lock row *is* the lock. Unique constraints on dms_locks.folder_id
and dms_locks.file_id serialize concurrent lock attempts: the loser's commit
fails with an IntegrityError, reported as AlreadyLocked.

A lock on a folder also applies to everything below it: users other than the
holder (and without force_file_unlock) see those descendants as locked.
Locks never expire.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dms.db.models import File, Folder, Lock
from dms.documents.hierarchy import ancestor_chain
from dms.documents.interfaces import FORCE_FILE_UNLOCK, PermissionProvider
from dms.engine.context import ExecutionContext
from dms.engine.errors import AlreadyLocked, NotLocked, NotLockHolder
from dms.engine.logging import log, log_lock_event

logger = logging.getLogger("dms.documents.locks")

Lockable = Union[Folder, File]


def _object_ref(entity: Lockable) -> str:
    return f"{entity.kind}-{entity.id}"


class LockManager:
    """Lock/unlock and lock visibility checks for folders and files."""

    def __init__(self, session: Session, permissions: PermissionProvider):
        self._session = session
        self._permissions = permissions

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def get_lock(self, entity: Lockable) -> Optional[Lock]:
        """The lock placed directly on ``entity``, if any."""
        if isinstance(entity, Folder):
            q = select(Lock).where(Lock.folder_id == entity.id)
        else:
            q = select(Lock).where(Lock.file_id == entity.id)
        return self._session.execute(q).scalar_one_or_none()

    def effective_lock(self, entity: Lockable) -> Optional[Lock]:
        """The entity's own lock, else the nearest locked ancestor folder's lock."""
        own = self.get_lock(entity)
        if own is not None:
            return own
        parent_id = entity.parent_id if isinstance(entity, Folder) else entity.folder_id
        for folder in reversed(ancestor_chain(self._session, parent_id)):
            lock = self.get_lock(folder)
            if lock is not None:
                return lock
        return None

    def is_locked(self, entity: Lockable) -> bool:
        return self.effective_lock(entity) is not None

    def lock_holder(self, entity: Lockable) -> Optional[int]:
        lock = self.effective_lock(entity)
        return lock.user_id if lock else None

    def can_force_unlock(self, ctx: ExecutionContext, project_id: int) -> bool:
        return self._permissions.allowed_to(ctx, FORCE_FILE_UNLOCK, project_id)

    def locked_for_user(self, ctx: ExecutionContext, entity: Lockable) -> bool:
        """True when someone else's lock (own or inherited) blocks ``ctx`` from manipulating ``entity``."""
        lock = self.effective_lock(entity)
        if lock is None or lock.user_id == ctx.user_id:
            return False
        return not self.can_force_unlock(ctx, entity.project_id)

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------

    def lock(self, ctx: ExecutionContext, entity: Lockable) -> Lock:
        """
        Place an exclusive lock held by ``ctx.user_id``.

        Raises AlreadyLocked if the entity (or an ancestor folder) is locked.
        """
        existing = self.effective_lock(entity)
        if existing is not None:
            raise AlreadyLocked(
                f"{entity.kind.capitalize()} '{entity.title}' is already locked",
                object_ref=_object_ref(entity),
                user_id=ctx.user_id,
                holder_id=existing.user_id,
            )

        lock = Lock(user_id=ctx.user_id)
        if isinstance(entity, Folder):
            lock.folder_id = entity.id
        else:
            lock.file_id = entity.id
        self._session.add(lock)
        try:
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            raise AlreadyLocked(
                f"{entity.kind.capitalize()} '{entity.title}' is already locked",
                object_ref=_object_ref(entity),
                user_id=ctx.user_id,
            )

        logger.info(f"User {ctx.user_id} locked {_object_ref(entity)}")
        log(log_lock_event(
            "locked", _object_ref(entity), ctx.user_id, entity.project_id,
            execution_id=ctx.execution_id,
        ))
        return lock

    def unlock(self, ctx: ExecutionContext, entity: Lockable) -> None:
        """
        Release the lock placed directly on ``entity``.

        Raises NotLocked when there is no such lock and NotLockHolder when the
        caller is neither the holder nor allowed to force the unlock.
        """
        lock = self.get_lock(entity)
        if lock is None:
            raise NotLocked(
                f"{entity.kind.capitalize()} '{entity.title}' is not locked",
                object_ref=_object_ref(entity),
                user_id=ctx.user_id,
            )
        if lock.user_id != ctx.user_id and not self.can_force_unlock(ctx, entity.project_id):
            raise NotLockHolder(
                f"Only the user that locked {entity.kind} '{entity.title}' can unlock it",
                object_ref=_object_ref(entity),
                user_id=ctx.user_id,
                holder_id=lock.user_id,
            )

        holder_id = lock.user_id
        self._session.delete(lock)
        self._session.commit()
        logger.info(f"User {ctx.user_id} unlocked {_object_ref(entity)} (holder {holder_id})")
        log(log_lock_event(
            "unlocked", _object_ref(entity), ctx.user_id, entity.project_id,
            execution_id=ctx.execution_id, holder_id=holder_id,
        ))
