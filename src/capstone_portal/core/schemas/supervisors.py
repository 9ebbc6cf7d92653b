"""Pydantic request/response schemas for supervisor capacity."""

from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CapacityOverride(BaseModel):
    """Admin payload for changing a supervisor's maximum capacity.

    The upper bound is the configured system ceiling and is enforced by the
    capacity service rather than here.
    """

    max_capacity: int = Field(..., ge=0)
    reason: str = Field(..., min_length=1, max_length=1000)


class ReconcileRequest(BaseModel):
    """Admin payload for capacity reconciliation; omit the id to check everyone."""

    supervisor_id: Optional[uuid.UUID] = None


class SupervisorCapacityRead(BaseModel):
    """Supervisor view used when listing potential co-supervisors."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    full_name: str
    email: str
    department: Optional[str]
    current_capacity: int
    max_capacity: int
