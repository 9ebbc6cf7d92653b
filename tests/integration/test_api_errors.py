"""Integration tests for the error envelope exception handlers.

Tests verify:
- A unit of work that keeps losing commit races surfaces as HTTP 409
- Malformed path parameters are rendered as 400 envelopes
"""

from __future__ import annotations

import uuid

import pytest
from httpx import AsyncClient

from capstone_portal.core.application_workflow import ApplicationWorkflow
from capstone_portal.core.exceptions import TransientConflictError
from tests.conftest import auth_headers

pytestmark = pytest.mark.integration


class TestErrorEnvelopes:
    async def test_exhausted_retries_return_conflict(
        self,
        client: AsyncClient,
        create_student,
        create_supervisor,
        create_application,
        monkeypatch,
    ) -> None:
        student, supervisor = await create_student(), await create_supervisor()
        application = await create_application(student.id, supervisor.id)

        async def _always_conflicts(self, work, operation):
            raise TransientConflictError(5)

        monkeypatch.setattr(ApplicationWorkflow, "_transact", _always_conflicts)

        response = await client.patch(
            f"/applications/{application.id}/status",
            json={"status": "approved"},
            headers=auth_headers(supervisor.id, "supervisor"),
        )

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "The request conflicted with a concurrent update. Please try again."

    async def test_malformed_id_is_bad_request(self, client: AsyncClient) -> None:
        response = await client.get(
            "/applications/not-a-uuid", headers=auth_headers(uuid.uuid4(), "admin")
        )

        assert response.status_code == 400
        assert response.json()["success"] is False
