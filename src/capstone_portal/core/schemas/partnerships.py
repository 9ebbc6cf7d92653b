"""Pydantic request/response schemas for student and supervisor partnerships."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

RequestListType = Literal["incoming", "outgoing", "all"]
ResponseAction = Literal["accept", "reject"]


# ---------------------------------------------------------------------------
# Student partnerships
# ---------------------------------------------------------------------------


class StudentPartnershipRequestCreate(BaseModel):
    """Payload for proposing a partnership to another student."""

    target_student_id: uuid.UUID


class PartnershipResponse(BaseModel):
    """Payload for accepting or rejecting a pending request."""

    action: ResponseAction


class UnpairRequest(BaseModel):
    """Payload for dissolving the caller's current student partnership."""

    partner_id: uuid.UUID


class StudentPartnershipRequestRead(BaseModel):
    """Serialized student partnership request."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    requester_id: uuid.UUID
    target_student_id: uuid.UUID
    status: str
    created_at: datetime
    responded_at: Optional[datetime]


class StudentSummary(BaseModel):
    """Minimal student view used when listing potential partners."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    full_name: str
    email: str
    partnership_status: str


# ---------------------------------------------------------------------------
# Supervisor partnerships
# ---------------------------------------------------------------------------


class SupervisorPartnershipRequestCreate(BaseModel):
    """Payload for inviting a colleague to co-supervise a project."""

    target_supervisor_id: uuid.UUID
    project_id: uuid.UUID
    message: Optional[str] = Field(default=None, max_length=2000)


class SupervisorPartnershipRequestRead(BaseModel):
    """Serialized supervisor partnership request."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    requesting_supervisor_id: uuid.UUID
    target_supervisor_id: uuid.UUID
    project_id: uuid.UUID
    message: Optional[str]
    status: str
    created_at: datetime
    responded_at: Optional[datetime]
