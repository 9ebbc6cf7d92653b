"""Application ORM model.

One row per student (or partnered pair) request to a supervisor.  The
partial unique index ``uq_applications_open_pair`` backs the duplicate
guard: a student can hold at most one ``pending`` / ``under_review`` /
``revision_requested`` application per supervisor.

``linked_application_id`` / ``is_lead_application`` belong to the legacy
dual-application mode in which each partner filed their own row.  New rows
are always leads without a link; the columns are kept so that old pairs
keep working.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from capstone_portal.core.clock import utc_now
from capstone_portal.core.models.base import Base
from capstone_portal.core.models.enums import ApplicationStatus

_OPEN_STATUS_PREDICATE = sa.text(
    "status IN ('pending', 'under_review', 'revision_requested')"
)


class Application(Base):
    """A student's request to be supervised.

    Attributes:
        id: Unique identifier.
        student_id: The applying student.
        supervisor_id: The supervisor applied to.
        project_title: Proposed project title.
        project_description: Optional longer description.
        has_partner: Whether the student applied together with a partner.
        partner_id: The partner at submission time.
        partner_name: Partner display name snapshot.
        partner_email: Partner email snapshot.
        linked_application_id: Legacy link to the partner's own application.
        is_lead_application: Legacy flag; only lead rows move capacity.
        status: Workflow state, see :class:`ApplicationStatus`.
        supervisor_feedback: Latest feedback written with a status change.
        date_applied: Submission time.
        last_updated: Time of the latest mutation.
        response_date: Time of the latest approve/reject decision.
        resubmitted_date: Time of the latest resubmission.
        version_id: Optimistic-concurrency counter.
    """

    __tablename__ = "applications"
    __table_args__ = (
        sa.Index(
            "uq_applications_open_pair",
            "student_id",
            "supervisor_id",
            unique=True,
            postgresql_where=_OPEN_STATUS_PREDICATE,
            sqlite_where=_OPEN_STATUS_PREDICATE,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    supervisor_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("supervisors.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    project_title: Mapped[str] = mapped_column(sa.String(300), nullable=False)
    project_description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    has_partner: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    partner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.ForeignKey("students.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    partner_name: Mapped[Optional[str]] = mapped_column(sa.String(200), nullable=True)
    partner_email: Mapped[Optional[str]] = mapped_column(sa.String(320), nullable=True)
    linked_application_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.ForeignKey("applications.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_lead_application: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        default=True,
    )
    status: Mapped[str] = mapped_column(
        sa.String(30),
        nullable=False,
        default=ApplicationStatus.PENDING.value,
        index=True,
    )
    supervisor_feedback: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    date_applied: Mapped[datetime] = mapped_column(nullable=False, default=utc_now)
    last_updated: Mapped[datetime] = mapped_column(nullable=False, default=utc_now)
    response_date: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    resubmitted_date: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    version_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def counts_toward_capacity(self) -> bool:
        """Lead rows (and rows without a legacy link) move supervisor capacity."""
        return self.is_lead_application or self.linked_application_id is None

    def __repr__(self) -> str:
        return f"<Application id={self.id} status={self.status!r}>"
