"""Integration tests for the verification-resend routes.

Tests verify:
- Three resends per window are allowed, the fourth gets 429 + Retry-After
- Every response advertises the limit in ``X-RateLimit-*`` headers
- Verified callers are told so, but still count against the window
- The status endpoint reports the window without consuming it
- Limits are tracked per user
"""

from __future__ import annotations

import uuid

import pytest
from httpx import AsyncClient

from tests.conftest import auth_headers

pytestmark = pytest.mark.integration


class TestResendVerification:
    async def test_fourth_request_is_limited(self, client: AsyncClient) -> None:
        headers = auth_headers(uuid.uuid4(), "student", email_verified=False)

        responses = [
            await client.post("/auth/resend-verification", headers=headers) for _ in range(4)
        ]

        assert [r.status_code for r in responses] == [200, 200, 200, 429]
        assert responses[0].json()["message"] == "Verification email sent"
        assert [r.headers["X-RateLimit-Remaining"] for r in responses[:3]] == ["2", "1", "0"]
        limited = responses[3]
        assert limited.json() == {
            "success": False,
            "error": (
                "Too many requests. Please wait before requesting another verification email."
            ),
        }
        assert limited.headers["X-RateLimit-Limit"] == "3"
        assert int(limited.headers["Retry-After"]) > 0

    async def test_verified_caller(self, client: AsyncClient) -> None:
        headers = auth_headers(uuid.uuid4(), "student", email_verified=True)

        response = await client.post("/auth/resend-verification", headers=headers)

        assert response.status_code == 200
        assert response.json()["message"] == "Email already verified"
        assert response.headers["X-RateLimit-Used"] == "1"

    async def test_limits_are_per_user(self, client: AsyncClient) -> None:
        first = auth_headers(uuid.uuid4(), "student", email_verified=False)
        second = auth_headers(uuid.uuid4(), "student", email_verified=False)
        for _ in range(3):
            await client.post("/auth/resend-verification", headers=first)

        response = await client.post("/auth/resend-verification", headers=second)

        assert response.status_code == 200

    async def test_status_does_not_consume(self, client: AsyncClient) -> None:
        headers = auth_headers(uuid.uuid4(), "supervisor", email_verified=False)
        await client.post("/auth/resend-verification", headers=headers)

        for _ in range(2):
            status = await client.get("/auth/resend-verification/status", headers=headers)
            assert status.status_code == 200
            data = status.json()["data"]
            assert data["count"] == 1
            assert data["remaining"] == 2
            assert data["allowed"] is True

    async def test_requires_token(self, client: AsyncClient) -> None:
        response = await client.post("/auth/resend-verification")

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Authentication required"}
