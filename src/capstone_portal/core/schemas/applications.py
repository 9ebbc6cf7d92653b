"""Pydantic request/response schemas for applications."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

_STATUS_PATTERN = "^(pending|under_review|approved|rejected|revision_requested)$"


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class ApplicationCreate(BaseModel):
    """Payload for submitting an application.

    Attributes:
        supervisor_id: Supervisor being applied to.
        project_title: Proposed project title.
        project_description: Optional longer description.
        student_id: Only honoured for admins submitting on a student's
            behalf; students always apply as themselves.
    """

    supervisor_id: uuid.UUID
    project_title: str = Field(..., min_length=1, max_length=300)
    project_description: Optional[str] = Field(default=None, max_length=5000)
    student_id: Optional[uuid.UUID] = None


class ApplicationStatusUpdate(BaseModel):
    """Payload for a supervisor or admin status decision."""

    status: str = Field(..., pattern=_STATUS_PATTERN)
    feedback: Optional[str] = Field(default=None, max_length=5000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ApplicationRead(BaseModel):
    """Serialized application returned by the workflow service."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    student_id: uuid.UUID
    supervisor_id: uuid.UUID
    project_title: str
    project_description: Optional[str]
    has_partner: bool
    partner_id: Optional[uuid.UUID]
    partner_name: Optional[str]
    partner_email: Optional[str]
    linked_application_id: Optional[uuid.UUID]
    is_lead_application: bool
    status: str
    supervisor_feedback: Optional[str]
    date_applied: datetime
    last_updated: datetime
    response_date: Optional[datetime]
    resubmitted_date: Optional[datetime]
