"""
DMS — Document management core.
Version: 1.0

Hierarchical folder/file storage with revisions, exclusive locks, links,
soft delete and restore, bulk archive export and access auditing, layered on
a host application's projects, users and permissions.
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "documents", "security"]
