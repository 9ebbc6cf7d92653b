"""Partnership request ORM models for students and supervisors.

``uq_student_requests_pending_pair`` keeps at most one pending request per
unordered pair of students: ``pair_key`` holds both ids in sorted order so
A→B and B→A collide.  ``uq_supervisor_requests_pending`` does the same for
a (project, target supervisor) pair.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from capstone_portal.core.clock import utc_now
from capstone_portal.core.models.base import Base
from capstone_portal.core.models.enums import RequestStatus

_PENDING_PREDICATE = sa.text("status = 'pending'")


def student_pair_key(first: uuid.UUID, second: uuid.UUID) -> str:
    """Return the order-independent key for a pair of students."""
    low, high = sorted((str(first), str(second)))
    return f"{low}:{high}"


class StudentPartnershipRequest(Base):
    """A proposal from one student to pair up with another.

    Attributes:
        id: Unique identifier.
        requester_id: Student who sent the request.
        target_student_id: Student asked to respond.
        pair_key: Sorted ``"<id>:<id>"`` of both students.
        status: One of ``pending``, ``accepted``, ``rejected``, ``cancelled``.
        created_at: Time the request was sent.
        responded_at: Time the request left ``pending``.
        version_id: Optimistic-concurrency counter.
    """

    __tablename__ = "student_partnership_requests"
    __table_args__ = (
        sa.Index(
            "uq_student_requests_pending_pair",
            "pair_key",
            unique=True,
            postgresql_where=_PENDING_PREDICATE,
            sqlite_where=_PENDING_PREDICATE,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    requester_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target_student_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pair_key: Mapped[str] = mapped_column(sa.String(80), nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=RequestStatus.PENDING.value,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utc_now)
    responded_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    version_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def involves(self, student_id: uuid.UUID) -> bool:
        return student_id in (self.requester_id, self.target_student_id)

    def __repr__(self) -> str:
        return (
            f"<StudentPartnershipRequest {self.requester_id}->{self.target_student_id} "
            f"status={self.status!r}>"
        )


class SupervisorPartnershipRequest(Base):
    """A proposal from a project's supervisor to a colleague to co-supervise.

    Attributes:
        id: Unique identifier.
        requesting_supervisor_id: The project's primary supervisor.
        target_supervisor_id: Supervisor invited to co-supervise.
        project_id: Project the co-supervision is for.
        message: Optional note to the target.
        status: One of ``pending``, ``accepted``, ``rejected``, ``cancelled``.
        created_at: Time the request was sent.
        responded_at: Time the request left ``pending``.
        version_id: Optimistic-concurrency counter.
    """

    __tablename__ = "supervisor_partnership_requests"
    __table_args__ = (
        sa.Index(
            "uq_supervisor_requests_pending",
            "project_id",
            "target_supervisor_id",
            unique=True,
            postgresql_where=_PENDING_PREDICATE,
            sqlite_where=_PENDING_PREDICATE,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    requesting_supervisor_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("supervisors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target_supervisor_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("supervisors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    message: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=RequestStatus.PENDING.value,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utc_now)
    responded_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    version_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<SupervisorPartnershipRequest project={self.project_id} "
            f"target={self.target_supervisor_id} status={self.status!r}>"
        )
