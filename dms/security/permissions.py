"""
DMS Grant Table — In-memory capability grants and module switches.

Reference implementation of the PermissionProvider and ModuleProvider
protocols. Hosts with their own role model implement the protocols directly;
this table backs the CLI, tests and small embedded deployments.

Resolution order:
    1. ctx.is_admin → every capability in every project
    2. Explicit grant for (user_id, project_id)
    3. Nothing granted → denied
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, Optional, Set, Tuple

from dms.db.models import DOCUMENTS_MODULE
from dms.documents.interfaces import ALL_CAPABILITIES
from dms.engine.context import ExecutionContext
from dms.engine.errors import AccessDenied
from dms.engine.logging import log, log_security_event

logger = logging.getLogger("dms.security.permissions")


class GrantTablePermissions:
    """Capability grants keyed by (user_id, project_id)."""

    def __init__(self):
        self._grants: Dict[Tuple[int, int], Set[str]] = defaultdict(set)
        self._members: Set[Tuple[int, int]] = set()
        self._modules: Dict[int, Set[str]] = defaultdict(set)

    def add_member(self, user_id: int, project_id: int, capabilities: Iterable[str] = ()) -> None:
        """Make the user a project member and grant the given capabilities."""
        self._members.add((user_id, project_id))
        self.grant(user_id, project_id, *capabilities)

    def grant(self, user_id: int, project_id: int, *capabilities: str) -> None:
        unknown = set(capabilities) - ALL_CAPABILITIES
        if unknown:
            raise ValueError(f"Unknown capabilities: {sorted(unknown)}")
        self._grants[(user_id, project_id)].update(capabilities)

    def revoke(self, user_id: int, project_id: int, *capabilities: str) -> None:
        self._grants[(user_id, project_id)].difference_update(capabilities)

    def enable_module(self, project_id: int, module: str = DOCUMENTS_MODULE) -> None:
        self._modules[project_id].add(module)

    def disable_module(self, project_id: int, module: str = DOCUMENTS_MODULE) -> None:
        self._modules[project_id].discard(module)

    # PermissionProvider

    def allowed_to(self, ctx: ExecutionContext, capability: str, project_id: int) -> bool:
        if not self.module_enabled(project_id, DOCUMENTS_MODULE):
            return False
        if ctx.is_admin:
            return True
        allowed = capability in self._grants.get((ctx.user_id, project_id), set())
        if not allowed:
            logger.debug(f"Denied {capability} in project {project_id} for user {ctx.user_id}")
        return allowed

    def is_member(self, ctx: ExecutionContext, project_id: int) -> bool:
        return (ctx.user_id, project_id) in self._members

    # ModuleProvider

    def module_enabled(self, project_id: int, module: str) -> bool:
        return module in self._modules.get(project_id, set())


def require_capability(
    permissions,
    ctx: ExecutionContext,
    capability: str,
    project_id: Optional[int],
    object_type: str = "system",
    object_ref: str = "entries",
) -> None:
    """
    Raise AccessDenied unless ``ctx`` holds ``capability`` in ``project_id``.

    Denials are written to the security log files.
    """
    if project_id is not None and permissions.allowed_to(ctx, capability, project_id):
        return
    log(log_security_event(
        "access_denied", object_ref, object_type, capability,
        ctx.user_id, project_id, execution_id=ctx.execution_id,
    ))
    raise AccessDenied(
        f"You are not authorized to {capability.replace('_', ' ')}",
        object_ref=object_ref,
        user_id=ctx.user_id,
        project_id=project_id,
        required_permission=capability,
    )
