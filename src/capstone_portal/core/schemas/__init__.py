"""Pydantic schemas for request/response validation.

Sub-modules:
    applications: ApplicationCreate, ApplicationStatusUpdate, ApplicationRead
    partnerships: student and supervisor partnership request payloads and reads
    projects: ProjectStatusUpdate, ProjectRead
    supervisors: CapacityOverride, SupervisorCapacityRead
    rate_limit: RateLimitStatusRead
"""

from __future__ import annotations
