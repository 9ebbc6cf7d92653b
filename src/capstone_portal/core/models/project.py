"""Project ORM model.

A project is owned by its primary supervisor and may gain one
co-supervisor through an accepted supervisor partnership request.  While a
co-supervisor is attached, one unit of their capacity is held; it is
released when they are unpaired or when the project completes.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from capstone_portal.core.models.base import Base, TimestampMixin
from capstone_portal.core.models.enums import ProjectStatus


class Project(Base, TimestampMixin):
    """A supervised capstone project.

    Attributes:
        id: Unique identifier.
        title: Project title.
        description: Optional description.
        supervisor_id: Primary supervisor.
        co_supervisor_id: Co-supervisor, if a partnership is active.
        status: One of ``pending_approval``, ``approved``, ``in_progress``,
            ``completed``.
        completed_at: Time the project entered ``completed``.
        version_id: Optimistic-concurrency counter.
    """

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(sa.String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    supervisor_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("supervisors.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    co_supervisor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.ForeignKey("supervisors.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=ProjectStatus.PENDING_APPROVAL.value,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    version_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Project id={self.id} status={self.status!r}>"
