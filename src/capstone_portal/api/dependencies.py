"""FastAPI dependency injection providers.

Provides the verified caller, the Redis client, and one provider per
workflow service.  Services are cheap to construct and are built per
request around the shared session factory.

Dependency hierarchy::

    get_current_caller: requires a valid bearer token
    require_admin: additionally requires role='admin'

Tests override ``get_session_factory`` and ``get_redis`` through
``app.dependency_overrides``; every service provider below picks the
overrides up automatically.
"""

from __future__ import annotations

from typing import Annotated, AsyncGenerator, Optional

import redis.asyncio as aioredis
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from capstone_portal.config.settings import Settings, get_settings
from capstone_portal.core.application_workflow import ApplicationWorkflow
from capstone_portal.core.capacity_ledger import CapacityService
from capstone_portal.core.database import get_session_factory
from capstone_portal.core.event_bus import WorkflowEventPublisher
from capstone_portal.core.exceptions import UnauthenticatedError
from capstone_portal.core.identity import Caller, decode_bearer_token
from capstone_portal.core.models.enums import Role
from capstone_portal.core.project_service import ProjectService
from capstone_portal.core.rate_limiter import RateLimitConfig, RateLimiter
from capstone_portal.core.student_partnership_service import StudentPartnershipService
from capstone_portal.core.supervisor_partnership_service import SupervisorPartnershipService

_bearer_scheme = HTTPBearer(auto_error=False)

SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


async def get_current_caller(
    settings: SettingsDep,
    credentials: Annotated[
        Optional[HTTPAuthorizationCredentials], Depends(_bearer_scheme)
    ],
) -> Caller:
    """Verify the bearer token and return the caller it identifies.

    Raises:
        UnauthenticatedError: If the header is missing or the token is invalid.
            Rendered as HTTP 401 by the exception handlers in ``main.py``.
    """
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError()
    return decode_bearer_token(
        credentials.credentials,
        settings.secret_key,
        settings.jwt_algorithm,
    )


CurrentCaller = Annotated[Caller, Depends(get_current_caller)]


async def require_admin(caller: CurrentCaller) -> Caller:
    """Require a caller with ``role='admin'``."""
    caller.require_role(Role.ADMIN)
    return caller


# ---------------------------------------------------------------------------
# Redis async client
# ---------------------------------------------------------------------------


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    """Yield a per-request async Redis client and close it on teardown.

    The connection is opened lazily on first I/O, so requests that never
    publish an event or touch a rate limit never connect.
    """
    settings = get_settings()
    client: aioredis.Redis = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    try:
        yield client
    finally:
        await client.aclose()


RedisDep = Annotated[aioredis.Redis, Depends(get_redis)]


def get_event_publisher(settings: SettingsDep, redis: RedisDep) -> WorkflowEventPublisher:
    return WorkflowEventPublisher(redis if settings.events_enabled else None)


EventsDep = Annotated[WorkflowEventPublisher, Depends(get_event_publisher)]


# ---------------------------------------------------------------------------
# Workflow services
# ---------------------------------------------------------------------------


def get_application_workflow(
    session_factory: SessionFactory,
    events: EventsDep,
) -> ApplicationWorkflow:
    return ApplicationWorkflow(session_factory, events=events)


def get_student_partnership_service(
    session_factory: SessionFactory,
    events: EventsDep,
) -> StudentPartnershipService:
    return StudentPartnershipService(session_factory, events=events)


def get_supervisor_partnership_service(
    session_factory: SessionFactory,
    events: EventsDep,
) -> SupervisorPartnershipService:
    return SupervisorPartnershipService(session_factory, events=events)


def get_project_service(
    session_factory: SessionFactory,
    events: EventsDep,
    partnerships: Annotated[
        SupervisorPartnershipService, Depends(get_supervisor_partnership_service)
    ],
) -> ProjectService:
    return ProjectService(session_factory, partnerships, events=events)


def get_capacity_service(
    session_factory: SessionFactory,
    settings: SettingsDep,
) -> CapacityService:
    return CapacityService(
        session_factory,
        max_supervisor_capacity=settings.max_supervisor_capacity,
    )


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


def get_rate_limiter(redis: RedisDep) -> RateLimiter:
    return RateLimiter(redis)


def get_resend_verification_limit(settings: SettingsDep) -> RateLimitConfig:
    """Verification-resend budget from settings (three per hour by default)."""
    return RateLimitConfig(
        max_requests=settings.resend_verification_max_requests,
        window_ms=settings.resend_verification_window_ms,
    )
