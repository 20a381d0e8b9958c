"""DMS Engine — Errors, execution context, configuration, logging."""

from dms.engine.context import ExecutionContext  # noqa: F401
from dms.engine.config import DMSConfig, DocumentsConfig, get_config, load_config  # noqa: F401

__all__ = [
    "ExecutionContext",
    "DMSConfig",
    "DocumentsConfig",
    "get_config",
    "load_config",
]
