"""Pydantic request/response schemas for projects."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProjectStatusUpdate(BaseModel):
    """Payload for moving a project to a new lifecycle status."""

    status: str = Field(..., pattern="^(pending_approval|approved|in_progress|completed)$")


class ProjectRead(BaseModel):
    """Serialized project."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: Optional[str]
    supervisor_id: uuid.UUID
    co_supervisor_id: Optional[uuid.UUID]
    status: str
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
