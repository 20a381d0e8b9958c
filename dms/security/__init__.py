"""DMS Security — Reference permission and module providers."""

from dms.security.permissions import GrantTablePermissions, require_capability

__all__ = ["GrantTablePermissions", "require_capability"]
