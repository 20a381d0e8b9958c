"""
DMS Database Base — SQLAlchemy declarative base and mixins.

Provides:
- Base: SQLAlchemy declarative base for all DMS models
- AuditMixin: created_at, updated_at
- SoftDeleteMixin: deleted, deleted_at, deleted_by_user_id
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Integer
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all DMS models."""
    pass


class AuditMixin:
    """Adds created_at and updated_at columns."""
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class SoftDeleteMixin:
    """Adds deleted, deleted_at, deleted_by_user_id columns for soft delete support."""
    deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by_user_id = Column(Integer, nullable=True)

    def mark_deleted(self, user_id: Optional[int], when: Optional[datetime] = None) -> None:
        self.deleted = True
        self.deleted_at = when or utcnow()
        self.deleted_by_user_id = user_id

    def clear_deleted(self) -> None:
        self.deleted = False
        self.deleted_at = None
        self.deleted_by_user_id = None
