"""Pydantic response schema for rate-limit status."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RateLimitStatusRead(BaseModel):
    """Current standing of one (user, endpoint) window."""

    allowed: bool
    limit: int
    remaining: int
    count: int
    reset_at: Optional[datetime]
    retry_after: Optional[int]
