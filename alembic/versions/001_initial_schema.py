"""Initial schema: supervisors, students, projects, applications, partnership requests.

Creates every table used by the workflow engine.

Key design choices:
- Capacity- and partner-bearing tables carry ``version_id`` for the ORM's
  optimistic concurrency check.
- Duplicate guards are partial unique indexes:
    * ``uq_applications_open_pair``: one open application per
      (student, supervisor) while pending / under_review / revision_requested.
    * ``uq_student_requests_pending_pair``: one pending request per
      unordered student pair (``pair_key`` holds the sorted ids).
    * ``uq_supervisor_requests_pending``: one pending request per
      (project, target supervisor).
- ``current_capacity >= 0`` and ``max_capacity >= 0`` are CHECK constraints;
  ``current_capacity <= max_capacity`` is enforced transactionally so that
  an admin override can be validated against the row read in the same
  transaction.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_UUID = postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    ]


def _version() -> sa.Column:
    return sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1"))


def upgrade() -> None:
    """Create all workflow tables and their indexes."""
    op.create_table(
        "supervisors",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("department", sa.String(200), nullable=True),
        sa.Column("current_capacity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_capacity", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _version(),
        *_timestamps(),
        sa.CheckConstraint("current_capacity >= 0", name="ck_supervisors_current_capacity"),
        sa.CheckConstraint("max_capacity >= 0", name="ck_supervisors_max_capacity"),
    )

    op.create_table(
        "students",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column(
            "partner_id",
            _UUID,
            sa.ForeignKey("students.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "partnership_status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'none'"),
        ),
        _version(),
        *_timestamps(),
    )

    op.create_table(
        "projects",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "supervisor_id",
            _UUID,
            sa.ForeignKey("supervisors.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "co_supervisor_id",
            _UUID,
            sa.ForeignKey("supervisors.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'pending_approval'"),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _version(),
        *_timestamps(),
    )
    op.create_index("ix_projects_supervisor_id", "projects", ["supervisor_id"])
    op.create_index("ix_projects_co_supervisor_id", "projects", ["co_supervisor_id"])

    op.create_table(
        "applications",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column(
            "student_id",
            _UUID,
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "supervisor_id",
            _UUID,
            sa.ForeignKey("supervisors.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("project_title", sa.String(300), nullable=False),
        sa.Column("project_description", sa.Text(), nullable=True),
        sa.Column("has_partner", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "partner_id",
            _UUID,
            sa.ForeignKey("students.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("partner_name", sa.String(200), nullable=True),
        sa.Column("partner_email", sa.String(320), nullable=True),
        sa.Column(
            "linked_application_id",
            _UUID,
            sa.ForeignKey("applications.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "is_lead_application",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
        ),
        sa.Column("status", sa.String(30), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("supervisor_feedback", sa.Text(), nullable=True),
        sa.Column(
            "date_applied",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "last_updated",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("response_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resubmitted_date", sa.DateTime(timezone=True), nullable=True),
        _version(),
    )
    op.create_index("ix_applications_student_id", "applications", ["student_id"])
    op.create_index("ix_applications_supervisor_id", "applications", ["supervisor_id"])
    op.create_index("ix_applications_partner_id", "applications", ["partner_id"])
    op.create_index("ix_applications_status", "applications", ["status"])
    op.create_index(
        "uq_applications_open_pair",
        "applications",
        ["student_id", "supervisor_id"],
        unique=True,
        postgresql_where=sa.text(
            "status IN ('pending', 'under_review', 'revision_requested')"
        ),
    )

    op.create_table(
        "student_partnership_requests",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column(
            "requester_id",
            _UUID,
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "target_student_id",
            _UUID,
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pair_key", sa.String(80), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        _version(),
    )
    op.create_index(
        "ix_student_partnership_requests_requester_id",
        "student_partnership_requests",
        ["requester_id"],
    )
    op.create_index(
        "ix_student_partnership_requests_target_student_id",
        "student_partnership_requests",
        ["target_student_id"],
    )
    op.create_index(
        "uq_student_requests_pending_pair",
        "student_partnership_requests",
        ["pair_key"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "supervisor_partnership_requests",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column(
            "requesting_supervisor_id",
            _UUID,
            sa.ForeignKey("supervisors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "target_supervisor_id",
            _UUID,
            sa.ForeignKey("supervisors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "project_id",
            _UUID,
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        _version(),
    )
    op.create_index(
        "ix_supervisor_partnership_requests_requesting_supervisor_id",
        "supervisor_partnership_requests",
        ["requesting_supervisor_id"],
    )
    op.create_index(
        "ix_supervisor_partnership_requests_target_supervisor_id",
        "supervisor_partnership_requests",
        ["target_supervisor_id"],
    )
    op.create_index(
        "ix_supervisor_partnership_requests_project_id",
        "supervisor_partnership_requests",
        ["project_id"],
    )
    op.create_index(
        "uq_supervisor_requests_pending",
        "supervisor_partnership_requests",
        ["project_id", "target_supervisor_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "capacity_changes",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column(
            "supervisor_id",
            _UUID,
            sa.ForeignKey("supervisors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("previous_max_capacity", sa.Integer(), nullable=False),
        sa.Column("new_max_capacity", sa.Integer(), nullable=False),
        sa.Column("current_capacity", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("changed_by", _UUID, nullable=False),
        sa.Column(
            "changed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index("ix_capacity_changes_supervisor_id", "capacity_changes", ["supervisor_id"])


def downgrade() -> None:
    """Drop all workflow tables in reverse dependency order."""
    op.drop_table("capacity_changes")
    op.drop_table("supervisor_partnership_requests")
    op.drop_table("student_partnership_requests")
    op.drop_table("applications")
    op.drop_table("projects")
    op.drop_table("students")
    op.drop_table("supervisors")
