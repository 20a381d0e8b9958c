"""
DMS Models — SQLAlchemy models for the document-management tables.

Tables defined here:
1. dms_projects               — Host project mirror (name, notification, modules)
2. dms_folders                — Folder hierarchy (soft-deletable)
3. dms_files                  — Files attached to a folder or the project root
4. dms_file_revisions         — Append-only revision history with stored content
5. dms_locks                  — Exclusive folder/file locks
6. dms_links                  — Folder/file/url aliases placed inside folders
7. dms_file_revision_accesses — Download/email audit trail (append-only)
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from dms.db.base import AuditMixin, Base, SoftDeleteMixin, utcnow

DOCUMENTS_MODULE = "documents"


# ---------------------------------------------------------------------------
# 1. Projects
# ---------------------------------------------------------------------------

class Project(Base):
    __tablename__ = "dms_projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    identifier = Column(String(100), unique=True, nullable=False)
    notification = Column(Boolean, default=False, nullable=False)
    enabled_modules = Column(JSON, default=lambda: [DOCUMENTS_MODULE], nullable=False)

    def module_enabled(self, module: str = DOCUMENTS_MODULE) -> bool:
        return module in (self.enabled_modules or [])

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, identifier='{self.identifier}')>"


# ---------------------------------------------------------------------------
# 2. Folders
# ---------------------------------------------------------------------------

class Folder(Base, AuditMixin, SoftDeleteMixin):
    __tablename__ = "dms_folders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("dms_projects.id", ondelete="CASCADE"), nullable=False)
    parent_id = Column(Integer, ForeignKey("dms_folders.id", ondelete="CASCADE"), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    user_id = Column(Integer, nullable=True)
    notification = Column(Boolean, default=False, nullable=False)
    system = Column(Boolean, default=False, nullable=False)

    project = relationship("Project")
    parent = relationship("Folder", remote_side=[id])

    __table_args__ = (
        Index("idx_folders_project_parent", "project_id", "parent_id"),
    )

    @property
    def kind(self) -> str:
        return "folder"

    def __repr__(self) -> str:
        return f"<Folder(id={self.id}, title='{self.title}', deleted={self.deleted})>"


# ---------------------------------------------------------------------------
# 3. Files
# ---------------------------------------------------------------------------

class File(Base, AuditMixin, SoftDeleteMixin):
    __tablename__ = "dms_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("dms_projects.id", ondelete="CASCADE"), nullable=False)
    folder_id = Column(Integer, ForeignKey("dms_folders.id", ondelete="CASCADE"), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    notification = Column(Boolean, default=False, nullable=False)

    project = relationship("Project")
    folder = relationship("Folder")
    revisions = relationship(
        "FileRevision",
        back_populates="file",
        order_by="FileRevision.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_files_project_folder", "project_id", "folder_id"),
    )

    @property
    def kind(self) -> str:
        return "file"

    @property
    def title(self) -> str:
        return self.name

    @property
    def last_revision(self) -> Optional["FileRevision"]:
        """Most recently created non-deleted revision."""
        live: List[FileRevision] = [r for r in self.revisions if not r.deleted]
        return live[-1] if live else None

    def __repr__(self) -> str:
        return f"<File(id={self.id}, name='{self.name}', deleted={self.deleted})>"


# ---------------------------------------------------------------------------
# 4. File Revisions
# ---------------------------------------------------------------------------

class FileRevision(Base):
    __tablename__ = "dms_file_revisions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(Integer, ForeignKey("dms_files.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    disk_path = Column(String(500), nullable=False)
    size = Column(BigInteger, default=0, nullable=False)
    mime_type = Column(String(100), default="application/octet-stream", nullable=False)
    major_version = Column(Integer, default=1, nullable=False)
    minor_version = Column(Integer, default=0, nullable=False)
    comment = Column(Text, nullable=True)
    user_id = Column(Integer, nullable=True)
    deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    file = relationship("File", back_populates="revisions")

    @property
    def version(self) -> str:
        return f"{self.major_version}.{self.minor_version}"

    def __repr__(self) -> str:
        return f"<FileRevision(id={self.id}, file_id={self.file_id}, v{self.version})>"


# ---------------------------------------------------------------------------
# 5. Locks
# ---------------------------------------------------------------------------

class Lock(Base):
    __tablename__ = "dms_locks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    folder_id = Column(Integer, ForeignKey("dms_folders.id", ondelete="CASCADE"), nullable=True, unique=True)
    file_id = Column(Integer, ForeignKey("dms_files.id", ondelete="CASCADE"), nullable=True, unique=True)
    user_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "(folder_id IS NULL) <> (file_id IS NULL)",
            name="ck_locks_single_target",
        ),
    )

    @property
    def object_ref(self) -> str:
        if self.folder_id is not None:
            return f"folder-{self.folder_id}"
        return f"file-{self.file_id}"

    def __repr__(self) -> str:
        return f"<Lock({self.object_ref} held by {self.user_id})>"


# ---------------------------------------------------------------------------
# 6. Links
# ---------------------------------------------------------------------------

class Link(Base, AuditMixin, SoftDeleteMixin):
    __tablename__ = "dms_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("dms_projects.id", ondelete="CASCADE"), nullable=False)
    folder_id = Column(Integer, ForeignKey("dms_folders.id", ondelete="CASCADE"), nullable=True)
    target_type = Column(String(20), nullable=False)
    target_id = Column(Integer, nullable=True)
    external_url = Column(String(2000), nullable=True)
    title = Column(String(255), nullable=False)
    user_id = Column(Integer, nullable=True)

    project = relationship("Project")
    folder = relationship("Folder")

    __table_args__ = (
        CheckConstraint(
            "target_type IN ('folder', 'file', 'url')",
            name="ck_links_target_type",
        ),
        Index("idx_links_project_folder", "project_id", "folder_id"),
    )

    @property
    def kind(self) -> str:
        return f"{self.target_type}-link"

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, {self.target_type} → {self.target_id or self.external_url})>"


# ---------------------------------------------------------------------------
# 7. File Revision Access (audit)
# ---------------------------------------------------------------------------

class FileRevisionAccess(Base):
    __tablename__ = "dms_file_revision_accesses"

    DOWNLOAD_ACTION = 1
    EMAIL_ACTION = 2

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    # Plain ids: audit rows outlive destroyed revisions.
    revision_id = Column(Integer, nullable=False, index=True)
    file_id = Column(Integer, nullable=False)
    action = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("action IN (1, 2)", name="ck_access_action"),
    )

    @property
    def action_name(self) -> str:
        return "download" if self.action == self.DOWNLOAD_ACTION else "email"

    def __repr__(self) -> str:
        return f"<FileRevisionAccess(user={self.user_id}, revision={self.revision_id}, {self.action_name})>"
