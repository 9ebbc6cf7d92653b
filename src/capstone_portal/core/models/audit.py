"""Audit trail for administrative capacity overrides."""

from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from capstone_portal.core.clock import utc_now
from capstone_portal.core.models.base import Base


class CapacityChange(Base):
    """One admin change to a supervisor's ``max_capacity``.

    Written in the same transaction as the supervisor update, so every
    committed override has exactly one audit row.
    """

    __tablename__ = "capacity_changes"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    supervisor_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("supervisors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    previous_max_capacity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    new_max_capacity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    current_capacity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    changed_by: Mapped[uuid.UUID] = mapped_column(nullable=False)
    changed_at: Mapped[datetime] = mapped_column(nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return (
            f"<CapacityChange supervisor={self.supervisor_id} "
            f"{self.previous_max_capacity}->{self.new_max_capacity}>"
        )
