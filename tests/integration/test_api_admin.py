"""Integration tests for the admin supervisor-capacity routes.

Tests verify:
- Admins can read and override a supervisor's maximum capacity
- The override may not drop below the current capacity
- Reconciliation corrects drift
- Non-admin callers are refused
"""

from __future__ import annotations

import uuid

import pytest
from httpx import AsyncClient

from capstone_portal.core.models import Supervisor
from tests.conftest import auth_headers

pytestmark = pytest.mark.integration

_ADMIN_ID = uuid.uuid4()


def _admin_headers() -> dict[str, str]:
    return auth_headers(_ADMIN_ID, "admin")


class TestCapacityRoutes:
    async def test_get_capacity(self, client: AsyncClient, create_supervisor) -> None:
        supervisor = await create_supervisor(current_capacity=1, max_capacity=4)

        response = await client.get(
            f"/admin/supervisors/{supervisor.id}/capacity", headers=_admin_headers()
        )

        assert response.status_code == 200
        assert response.json()["data"]["available"] == 3

    async def test_override_capacity(
        self, client: AsyncClient, create_supervisor, fetch
    ) -> None:
        supervisor = await create_supervisor(current_capacity=1, max_capacity=4)

        response = await client.patch(
            f"/admin/supervisors/{supervisor.id}/capacity",
            json={"max_capacity": 6, "reason": "Extra teaching relief"},
            headers=_admin_headers(),
        )

        assert response.status_code == 200, response.text
        assert (await fetch(Supervisor, supervisor.id)).max_capacity == 6

    async def test_override_below_current_refused(
        self, client: AsyncClient, create_supervisor
    ) -> None:
        supervisor = await create_supervisor(current_capacity=3, max_capacity=4)

        response = await client.patch(
            f"/admin/supervisors/{supervisor.id}/capacity",
            json={"max_capacity": 2, "reason": "Reduce load"},
            headers=_admin_headers(),
        )

        assert response.status_code == 400
        assert response.json()["error"] == (
            "Maximum capacity cannot be lower than current capacity (3)"
        )

    async def test_reconcile(
        self, client: AsyncClient, create_supervisor, create_student, create_application, fetch
    ) -> None:
        supervisor = await create_supervisor(current_capacity=4)
        student = await create_student()
        await create_application(student.id, supervisor.id, status="approved")

        response = await client.post(
            "/admin/supervisors/reconcile-capacity", headers=_admin_headers()
        )

        assert response.status_code == 200, response.text
        assert response.json()["data"]["updated"] == 1
        assert (await fetch(Supervisor, supervisor.id)).current_capacity == 1

    @pytest.mark.parametrize("role", ["student", "supervisor"])
    async def test_non_admin_refused(
        self, client: AsyncClient, create_supervisor, role: str
    ) -> None:
        supervisor = await create_supervisor()

        response = await client.get(
            f"/admin/supervisors/{supervisor.id}/capacity",
            headers=auth_headers(supervisor.id, role),
        )

        assert response.status_code == 403
