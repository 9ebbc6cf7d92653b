"""Status vocabularies shared by models, schemas and services.

Columns store the plain string values; the enums exist so that code can
compare against named members instead of string literals.
"""

from __future__ import annotations

from enum import Enum


class ApplicationStatus(str, Enum):
    """Lifecycle states of an :class:`~capstone_portal.core.models.application.Application`."""

    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


OPEN_APPLICATION_STATUSES: frozenset[str] = frozenset({
    ApplicationStatus.PENDING.value,
    ApplicationStatus.UNDER_REVIEW.value,
    ApplicationStatus.REVISION_REQUESTED.value,
})
"""Non-terminal statuses covered by the one-open-application-per-supervisor guard."""

DECIDED_APPLICATION_STATUSES: frozenset[str] = frozenset({
    ApplicationStatus.APPROVED.value,
    ApplicationStatus.REJECTED.value,
    ApplicationStatus.REVISION_REQUESTED.value,
})
"""Statuses that record a supervisor decision."""


class PartnershipStatus(str, Enum):
    """Informational partnership state on a student row."""

    NONE = "none"
    PENDING_SENT = "pending_sent"
    PENDING_RECEIVED = "pending_received"
    PAIRED = "paired"


class RequestStatus(str, Enum):
    """States shared by student and supervisor partnership requests."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ProjectStatus(str, Enum):
    """Lifecycle states of a supervised project."""

    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Role(str, Enum):
    """Roles asserted by the identity provider."""

    STUDENT = "student"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"
