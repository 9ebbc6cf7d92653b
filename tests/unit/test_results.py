"""Unit tests for the ServiceResult envelope and the workflow exception hierarchy.

Tests cover:
- ServiceResult.ok / fail and to_envelope() shapes
- returns_result: wraps plain returns, passes results through, converts WorkflowError
- returns_result: infrastructure errors still propagate
- Exception kinds, HTTP status codes and messages
"""

from __future__ import annotations

import uuid

import pytest

from capstone_portal.core.exceptions import (
    AlreadyProcessedError,
    BusinessRuleError,
    CapacityExceededError,
    DuplicateApplicationError,
    ForbiddenError,
    NotFoundError,
    SupervisorNotFoundError,
    TransientConflictError,
    UnauthenticatedError,
    WorkflowError,
)
from capstone_portal.core.results import ServiceResult, returns_result


# ---------------------------------------------------------------------------
# ServiceResult
# ---------------------------------------------------------------------------


class TestServiceResult:
    def test_ok_envelope_includes_data_and_message(self) -> None:
        result = ServiceResult.ok({"id": "abc"}, message="Done", status_code=201)

        assert result.success is True
        assert result.status_code == 201
        assert result.to_envelope() == {"success": True, "data": {"id": "abc"}, "message": "Done"}

    def test_ok_envelope_omits_missing_fields(self) -> None:
        assert ServiceResult.ok().to_envelope() == {"success": True}

    def test_fail_carries_kind_and_status(self) -> None:
        result = ServiceResult.fail(CapacityExceededError(5, 5))

        assert result.success is False
        assert result.kind == "capacity_exceeded"
        assert result.status_code == 400
        assert result.to_envelope() == {
            "success": False,
            "error": "Supervisor has reached maximum capacity (5/5)",
        }


class TestReturnsResult:
    async def test_plain_return_is_wrapped(self) -> None:
        @returns_result
        async def op() -> dict:
            return {"value": 1}

        result = await op()

        assert result == ServiceResult.ok({"value": 1})

    async def test_service_result_passes_through(self) -> None:
        created = ServiceResult.ok({"id": "x"}, status_code=201)

        @returns_result
        async def op():
            return created

        assert await op() is created

    async def test_workflow_error_becomes_failed_result(self) -> None:
        @returns_result
        async def op():
            raise ForbiddenError("Not yours")

        result = await op()

        assert result.success is False
        assert result.kind == "forbidden"
        assert result.status_code == 403
        assert result.error == "Not yours"

    async def test_infrastructure_errors_propagate(self) -> None:
        @returns_result
        async def op():
            raise TransientConflictError(5)

        with pytest.raises(TransientConflictError):
            await op()


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TestExceptions:
    def test_not_found_message_includes_id(self) -> None:
        entity_id = uuid.uuid4()

        exc = NotFoundError("Application", entity_id)

        assert exc.message == f"Application not found: {entity_id}"
        assert exc.status_code == 404

    def test_supervisor_not_found_is_a_not_found(self) -> None:
        exc = SupervisorNotFoundError("sup-1")

        assert isinstance(exc, NotFoundError)
        assert exc.entity == "Supervisor"

    def test_already_processed_names_the_status(self) -> None:
        exc = AlreadyProcessedError("accepted")

        assert exc.message == "This request has already been accepted"
        assert exc.kind == "already_processed"

    def test_business_rules_are_http_400(self) -> None:
        assert issubclass(DuplicateApplicationError, BusinessRuleError)
        assert DuplicateApplicationError().status_code == 400
        assert DuplicateApplicationError().message == (
            "You already have an active application to this supervisor"
        )

    def test_capacity_exceeded_records_numbers(self) -> None:
        exc = CapacityExceededError(3, 3, supervisor_id="sup-1")

        assert (exc.current, exc.maximum, exc.supervisor_id) == (3, 3, "sup-1")

    def test_unauthenticated_default_message(self) -> None:
        assert UnauthenticatedError().message == "Authentication required"

    def test_transient_conflict_is_not_a_workflow_error(self) -> None:
        exc = TransientConflictError(4)

        assert not isinstance(exc, WorkflowError)
        assert exc.attempts == 4
        assert exc.status_code == 409
