"""SQLAlchemy declarative base and shared mixins for all ORM models.

Provides:
- Base: the DeclarativeBase subclass all models inherit from
- TimestampMixin: created_at / updated_at columns
"""

from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from capstone_portal.core.clock import utc_now


class Base(DeclarativeBase):
    """Shared declarative base for all Capstone Portal models."""

    # Generic Uuid renders as native UUID on PostgreSQL and CHAR(32) on SQLite.
    type_annotation_map = {
        uuid.UUID: sa.Uuid(as_uuid=True),
        datetime: sa.DateTime(timezone=True),
    }


class TimestampMixin:
    """Adds created_at and updated_at columns.

    Both are filled in Python rather than by the server so that the values
    are loaded on the instance after a flush and never need a lazy refresh
    inside an async session.
    """

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utc_now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )
