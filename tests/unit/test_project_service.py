"""Unit tests for project lifecycle changes.

Tests cover:
- completing a project stamps completed_at and releases the co-supervisor
- completing twice releases capacity once
- leaving completed clears completed_at
- only the primary supervisor or an admin may change status
- unknown statuses are rejected before touching the database
- project.status_changed is published only for real changes
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

import pytest

from capstone_portal.core.event_bus import WorkflowEventPublisher
from capstone_portal.core.identity import Caller
from capstone_portal.core.models import Project, Supervisor
from capstone_portal.core.models.enums import Role
from capstone_portal.core.project_service import ProjectService
from capstone_portal.core.supervisor_partnership_service import SupervisorPartnershipService
from tests.conftest import FakeRedis

_NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def _service(session_factory, redis=None) -> ProjectService:
    events = WorkflowEventPublisher(redis)
    partnerships = SupervisorPartnershipService(session_factory, events=events)
    return ProjectService(session_factory, partnerships, events=events, clock=lambda: _NOW)


def _as_supervisor(supervisor) -> Caller:
    return Caller(uid=supervisor.id, role=Role.SUPERVISOR, email_verified=True)


@pytest.fixture
def service(session_factory) -> ProjectService:
    return _service(session_factory)


class TestCompletion:
    async def test_completion_releases_co_supervisor(
        self, service, create_supervisor, create_project, fetch
    ) -> None:
        primary = await create_supervisor()
        co = await create_supervisor(current_capacity=3)
        project = await create_project(primary.id, co_supervisor_id=co.id, status="in_progress")

        result = await service.change_project_status(
            project.id, "completed", caller=_as_supervisor(primary)
        )

        assert result.success
        assert result.data["status"] == "completed"
        assert result.data["co_supervisor_id"] is None
        row = await fetch(Project, project.id)
        assert row.co_supervisor_id is None
        assert row.completed_at.replace(tzinfo=None) == _NOW.replace(tzinfo=None)
        assert (await fetch(Supervisor, co.id)).current_capacity == 2

    async def test_completing_twice_releases_once(
        self, service, create_supervisor, create_project, fetch
    ) -> None:
        primary = await create_supervisor()
        co = await create_supervisor(current_capacity=3)
        project = await create_project(primary.id, co_supervisor_id=co.id, status="in_progress")

        for _ in range(2):
            await service.change_project_status(
                project.id, "completed", caller=_as_supervisor(primary)
            )

        assert (await fetch(Supervisor, co.id)).current_capacity == 2

    async def test_reopening_clears_completed_at(
        self, service, create_supervisor, create_project, fetch
    ) -> None:
        primary = await create_supervisor()
        project = await create_project(primary.id, status="completed", completed_at=_NOW)

        result = await service.change_project_status(
            project.id, "in_progress", caller=_as_supervisor(primary)
        )

        assert result.data["completed_at"] is None
        assert (await fetch(Project, project.id)).completed_at is None


class TestAuthorization:
    async def test_other_supervisor_forbidden(
        self, service, create_supervisor, create_project, fetch
    ) -> None:
        primary, outsider = await create_supervisor(), await create_supervisor()
        project = await create_project(primary.id, status="in_progress")

        result = await service.change_project_status(
            project.id, "completed", caller=_as_supervisor(outsider)
        )

        assert result.status_code == 403
        assert (await fetch(Project, project.id)).status == "in_progress"

    async def test_admin_may_change_any_project(
        self, service, create_supervisor, create_project
    ) -> None:
        primary = await create_supervisor()
        project = await create_project(primary.id)
        admin = Caller(uid=uuid.uuid4(), role=Role.ADMIN, email_verified=True)

        result = await service.change_project_status(project.id, "in_progress", caller=admin)

        assert result.success

    async def test_unknown_status_rejected(self, service) -> None:
        result = await service.change_project_status(
            uuid.uuid4(), "archived", caller=Caller(uid=uuid.uuid4(), role=Role.ADMIN)
        )

        assert result.kind == "validation_error"

    async def test_unknown_project(self, service) -> None:
        result = await service.change_project_status(
            uuid.uuid4(), "completed", caller=Caller(uid=uuid.uuid4(), role=Role.ADMIN)
        )

        assert result.status_code == 404


class TestEvents:
    async def test_status_change_published(
        self, session_factory, create_supervisor, create_project
    ) -> None:
        redis = FakeRedis()
        service = _service(session_factory, redis)
        primary = await create_supervisor()
        project = await create_project(primary.id, status="approved")

        await service.change_project_status(
            project.id, "in_progress", caller=_as_supervisor(primary)
        )
        await service.change_project_status(
            project.id, "in_progress", caller=_as_supervisor(primary)
        )

        payloads = [json.loads(raw) for _, raw in redis.published]
        assert [p["event"] for p in payloads] == ["project.status_changed"]
        assert payloads[0]["old_status"] == "approved"
        assert payloads[0]["new_status"] == "in_progress"
