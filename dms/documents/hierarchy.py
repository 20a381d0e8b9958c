"""
DMS Hierarchy Queries — Id-addressed walks over the folder tree.

Folders are addressed by id and walked with explicit stacks, never through
recursive relationship loading, so a walk over a deep or corrupted tree
terminates and reports exactly where it stopped.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from dms.db.models import Folder


def ancestor_chain(session: Session, folder_id: Optional[int]) -> List[Folder]:
    """
    Return the folders from the project root down to ``folder_id`` (inclusive).

    A parent cycle stops the walk at the first repeated id.
    """
    chain: List[Folder] = []
    seen = set()
    current_id = folder_id
    while current_id is not None and current_id not in seen:
        seen.add(current_id)
        folder = session.get(Folder, current_id)
        if folder is None:
            break
        chain.append(folder)
        current_id = folder.parent_id
    chain.reverse()
    return chain


def descendant_folder_ids(
    session: Session,
    folder_id: int,
    include_deleted: bool = True,
) -> List[int]:
    """All folder ids below ``folder_id`` in depth-first order (root excluded)."""
    result: List[int] = []
    seen = {folder_id}
    stack = [folder_id]
    while stack:
        current = stack.pop()
        q = select(Folder.id).where(Folder.parent_id == current).order_by(Folder.id)
        if not include_deleted:
            q = q.where(Folder.deleted.is_(False))
        for child_id in session.execute(q).scalars().all():
            if child_id in seen:
                continue
            seen.add(child_id)
            result.append(child_id)
            stack.append(child_id)
    return result


def is_descendant_or_self(session: Session, folder_id: int, candidate_id: Optional[int]) -> bool:
    """True when ``candidate_id`` is ``folder_id`` or lies below it."""
    if candidate_id is None:
        return False
    return any(f.id == folder_id for f in ancestor_chain(session, candidate_id))


def path_str(chain: List[Folder]) -> str:
    """Join folder titles into ``A/B/C``."""
    return "/".join(f.title for f in chain)
