"""
DMS Execution Context — Explicit per-request actor state.

The acting user and the project the request was issued in are carried in an
ExecutionContext that every store, lock, tree and bulk operation receives as
its first argument. There is no ambient "current user": the host builds one
context per request and threads it through.

Usage:
    from dms.engine.context import ExecutionContext

    ctx = ExecutionContext(user_id=2, username="jsmith", project_id=1)
    engine.delete(ctx, folders=[3], files=[7], links=[], commit=False)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ExecutionContext:
    """
    Per-request actor context.

    project_id is the project the request was issued in (the "current" project
    of the host). Operations that act on other projects take explicit target
    project ids.
    """

    user_id: int
    username: str
    project_id: Optional[int] = None
    full_name: str = ""
    email: str = ""
    is_admin: bool = False
    execution_id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    @property
    def sender(self) -> str:
        """Mail sender address in ``Name <mail>`` form."""
        if self.email:
            return f"{self.display_name} <{self.email}>"
        return self.display_name

    def for_project(self, project_id: int) -> "ExecutionContext":
        """Copy of this context bound to another project (same execution id)."""
        return ExecutionContext(
            user_id=self.user_id,
            username=self.username,
            project_id=project_id,
            full_name=self.full_name,
            email=self.email,
            is_admin=self.is_admin,
            execution_id=self.execution_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging."""
        return {
            "user_id": self.user_id,
            "username": self.username,
            "project_id": self.project_id,
            "is_admin": self.is_admin,
            "execution_id": self.execution_id,
        }
