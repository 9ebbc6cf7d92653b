"""Student and Supervisor ORM models.

Both rows are keyed by the uid the identity provider asserts for the user,
so a verified bearer token maps directly onto a primary key.

Supervisor capacity (``current_capacity`` / ``max_capacity``) and student
pairing (``partner_id`` / ``partnership_status``) are only ever changed
inside :func:`capstone_portal.core.database.run_in_transaction`; the
``version_id`` column turns a concurrent write into a retryable conflict.
"""

from __future__ import annotations

import uuid
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from capstone_portal.core.models.base import Base, TimestampMixin
from capstone_portal.core.models.enums import PartnershipStatus


class Supervisor(Base, TimestampMixin):
    """A capacity-bearing academic supervisor.

    Attributes:
        id: Identity-provider uid.
        full_name: Display name copied onto applications and projects.
        email: Contact address.
        department: Optional department label.
        current_capacity: Approved projects currently carried.  Never negative.
        max_capacity: Upper bound for ``current_capacity``; at most the
            configured ``max_supervisor_capacity``.
        is_active: Inactive supervisors accept no new applications.
        version_id: Optimistic-concurrency counter.
    """

    __tablename__ = "supervisors"
    __table_args__ = (
        sa.CheckConstraint("current_capacity >= 0", name="ck_supervisors_current_capacity"),
        sa.CheckConstraint("max_capacity >= 0", name="ck_supervisors_max_capacity"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(320), nullable=False, unique=True)
    department: Mapped[Optional[str]] = mapped_column(sa.String(200), nullable=True)
    current_capacity: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    max_capacity: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=5)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    version_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def has_capacity(self) -> bool:
        return self.current_capacity < self.max_capacity

    def __repr__(self) -> str:
        return (
            f"<Supervisor id={self.id} capacity={self.current_capacity}/{self.max_capacity}>"
        )


class Student(Base, TimestampMixin):
    """A student who applies to supervisors, optionally with one partner.

    ``partnership_status`` is informational; the authoritative record of an
    in-flight proposal is the partnership request row.  When
    ``partnership_status == 'paired'`` the partner's ``partner_id`` points
    back at this student.

    Attributes:
        id: Identity-provider uid.
        full_name: Display name.
        email: Contact address.
        partner_id: The paired partner, if any.
        partnership_status: One of ``none``, ``pending_sent``,
            ``pending_received``, ``paired``.
        version_id: Optimistic-concurrency counter.
    """

    __tablename__ = "students"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(320), nullable=False, unique=True)
    partner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.ForeignKey("students.id", ondelete="SET NULL"),
        nullable=True,
    )
    partnership_status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=PartnershipStatus.NONE.value,
    )
    version_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_paired(self) -> bool:
        return self.partnership_status == PartnershipStatus.PAIRED.value

    def __repr__(self) -> str:
        return f"<Student id={self.id} status={self.partnership_status!r}>"
