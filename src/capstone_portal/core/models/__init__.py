"""SQLAlchemy ORM models for Capstone Portal.

All models are imported here so that:
1. Alembic autogenerate can discover them via Base.metadata.
2. Application code can do ``from capstone_portal.core.models import Student``
   without knowing which sub-module a model lives in.
3. SQLAlchemy's relationship and foreign-key resolution finds every table
   at import time.
"""

from __future__ import annotations

from capstone_portal.core.models.base import Base, TimestampMixin
from capstone_portal.core.models.application import Application
from capstone_portal.core.models.audit import CapacityChange
from capstone_portal.core.models.enums import (
    ApplicationStatus,
    PartnershipStatus,
    ProjectStatus,
    RequestStatus,
    Role,
)
from capstone_portal.core.models.partnerships import (
    StudentPartnershipRequest,
    SupervisorPartnershipRequest,
    student_pair_key,
)
from capstone_portal.core.models.project import Project
from capstone_portal.core.models.users import Student, Supervisor

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Enums
    "ApplicationStatus",
    "PartnershipStatus",
    "ProjectStatus",
    "RequestStatus",
    "Role",
    # Users
    "Student",
    "Supervisor",
    # Workflow
    "Application",
    "Project",
    "StudentPartnershipRequest",
    "SupervisorPartnershipRequest",
    "student_pair_key",
    # Audit
    "CapacityChange",
]
