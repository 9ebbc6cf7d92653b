"""Unit tests for student partnership requests and pairing.

Tests cover:
- send_request: happy path, self request, already paired, duplicates in both directions
- respond_to_request: accept pairs both students and cancels competing requests
- respond_to_request: reject re-derives both students' status and allows a new request
- respond_to_request: only the target may respond, only while pending
- cancel_request: requester only, pending only
- unpair_students: symmetric dissolve and partner-field cleanup on applications
- get_partnership_requests / get_available_students
"""

from __future__ import annotations

import uuid

import pytest

from capstone_portal.core.models import Application, Student, StudentPartnershipRequest
from capstone_portal.core.student_partnership_service import StudentPartnershipService


@pytest.fixture
def service(session_factory) -> StudentPartnershipService:
    return StudentPartnershipService(session_factory)


async def _paired(create_student):
    first_id, second_id = uuid.uuid4(), uuid.uuid4()
    first = await create_student(id=first_id, partner_id=second_id, partnership_status="paired")
    second = await create_student(id=second_id, partner_id=first_id, partnership_status="paired")
    return first, second


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------


class TestSendRequest:
    async def test_creates_pending_request(self, service, create_student, fetch) -> None:
        requester, target = await create_student(), await create_student()

        result = await service.send_request(requester.id, target.id)

        assert result.success
        assert result.status_code == 201
        assert result.message == "Partnership request created successfully"
        request = await fetch(StudentPartnershipRequest, uuid.UUID(result.data["id"]))
        assert request.status == "pending"
        assert (await fetch(Student, requester.id)).partnership_status == "pending_sent"
        assert (await fetch(Student, target.id)).partnership_status == "pending_received"

    async def test_self_request_blocked(self, service, create_student) -> None:
        student = await create_student()

        result = await service.send_request(student.id, student.id)

        assert result.kind == "self_partnership_blocked"
        assert result.error == "You cannot send a partnership request to yourself"

    async def test_paired_requester_blocked(self, service, create_student) -> None:
        first, _ = await _paired(create_student)
        target = await create_student()

        result = await service.send_request(first.id, target.id)

        assert result.error == "You are already paired with another student"

    async def test_paired_target_blocked(self, service, create_student) -> None:
        _, second = await _paired(create_student)
        requester = await create_student()

        result = await service.send_request(requester.id, second.id)

        assert result.error == "Target student is already paired"

    async def test_repeat_request_is_duplicate(self, service, create_student) -> None:
        requester, target = await create_student(), await create_student()
        await service.send_request(requester.id, target.id)

        result = await service.send_request(requester.id, target.id)

        assert result.kind == "duplicate_request"
        assert result.error == "You already have a pending request with this student"

    async def test_reverse_request_points_to_incoming(self, service, create_student) -> None:
        first, second = await create_student(), await create_student()
        await service.send_request(first.id, second.id)

        result = await service.send_request(second.id, first.id)

        assert result.kind == "duplicate_request"
        assert result.error == (
            "This student has already sent you a request. Check your incoming requests."
        )

    async def test_unknown_target_not_found(self, service, create_student) -> None:
        requester = await create_student()

        result = await service.send_request(requester.id, uuid.uuid4())

        assert result.status_code == 404

    async def test_send_bumps_both_student_versions(self, service, create_student, fetch) -> None:
        """A second incoming request still versions the target, so a concurrent accept conflicts."""
        first, second, target = (
            await create_student(),
            await create_student(),
            await create_student(),
        )
        await service.send_request(first.id, target.id)
        target_before = (await fetch(Student, target.id)).version_id
        second_before = (await fetch(Student, second.id)).version_id

        result = await service.send_request(second.id, target.id)

        assert result.success
        assert (await fetch(Student, target.id)).version_id == target_before + 1
        assert (await fetch(Student, second.id)).version_id == second_before + 1


# ---------------------------------------------------------------------------
# Responding
# ---------------------------------------------------------------------------


class TestRespondToRequest:
    async def test_accept_pairs_both_students(self, service, create_student, fetch) -> None:
        requester, target = await create_student(), await create_student()
        sent = await service.send_request(requester.id, target.id)
        request_id = uuid.UUID(sent.data["id"])

        result = await service.respond_to_request(request_id, target.id, "accept")

        assert result.success
        assert result.message == "Partnership accepted successfully"
        assert result.data["status"] == "accepted"
        requester_row = await fetch(Student, requester.id)
        target_row = await fetch(Student, target.id)
        assert requester_row.partner_id == target.id
        assert target_row.partner_id == requester.id
        assert requester_row.partnership_status == target_row.partnership_status == "paired"

    async def test_accept_cancels_competing_requests(
        self, service, create_student, fetch
    ) -> None:
        """X->Y accepted while X->Z and W->Y are pending: the others are cancelled."""
        x, y = await create_student(), await create_student()
        z, w = await create_student(), await create_student()
        accepted = await service.send_request(x.id, y.id)
        to_z = await service.send_request(x.id, z.id)
        from_w = await service.send_request(w.id, y.id)

        await service.respond_to_request(uuid.UUID(accepted.data["id"]), y.id, "accept")

        for sent in (to_z, from_w):
            request = await fetch(StudentPartnershipRequest, uuid.UUID(sent.data["id"]))
            assert request.status == "cancelled"
            assert request.responded_at is not None
        assert (await fetch(Student, z.id)).partnership_status == "none"
        assert (await fetch(Student, w.id)).partnership_status == "none"

    async def test_reject_resets_status_and_allows_new_request(
        self, service, create_student, fetch
    ) -> None:
        x, y = await create_student(), await create_student()
        sent = await service.send_request(x.id, y.id)

        result = await service.respond_to_request(uuid.UUID(sent.data["id"]), y.id, "reject")

        assert result.message == "Partnership request rejected"
        assert (await fetch(Student, x.id)).partnership_status == "none"
        assert (await fetch(Student, y.id)).partnership_status == "none"
        again = await service.send_request(x.id, y.id)
        assert again.success

    async def test_reject_keeps_other_pending_status(
        self, service, create_student, fetch
    ) -> None:
        x, y, z = await create_student(), await create_student(), await create_student()
        rejected = await service.send_request(x.id, y.id)
        await service.send_request(x.id, z.id)

        await service.respond_to_request(uuid.UUID(rejected.data["id"]), y.id, "reject")

        assert (await fetch(Student, x.id)).partnership_status == "pending_sent"

    async def test_only_target_may_respond(self, service, create_student) -> None:
        x, y = await create_student(), await create_student()
        sent = await service.send_request(x.id, y.id)

        result = await service.respond_to_request(uuid.UUID(sent.data["id"]), x.id, "accept")

        assert result.status_code == 403
        assert result.error == "Unauthorized to respond to this request"

    async def test_already_processed(self, service, create_student) -> None:
        x, y = await create_student(), await create_student()
        sent = await service.send_request(x.id, y.id)
        request_id = uuid.UUID(sent.data["id"])
        await service.respond_to_request(request_id, y.id, "reject")

        result = await service.respond_to_request(request_id, y.id, "accept")

        assert result.kind == "already_processed"
        assert result.error == "This request has already been rejected"

    async def test_invalid_action(self, service) -> None:
        result = await service.respond_to_request(uuid.uuid4(), uuid.uuid4(), "maybe")

        assert result.kind == "validation_error"

    async def test_unknown_request(self, service) -> None:
        result = await service.respond_to_request(uuid.uuid4(), uuid.uuid4(), "accept")

        assert result.status_code == 404


# ---------------------------------------------------------------------------
# Cancelling
# ---------------------------------------------------------------------------


class TestCancelRequest:
    async def test_requester_cancels(self, service, create_student, fetch) -> None:
        x, y = await create_student(), await create_student()
        sent = await service.send_request(x.id, y.id)

        result = await service.cancel_request(uuid.UUID(sent.data["id"]), x.id)

        assert result.success
        assert result.message == "Partnership request cancelled"
        assert result.data["status"] == "cancelled"
        assert (await fetch(Student, y.id)).partnership_status == "none"

    async def test_target_may_not_cancel(self, service, create_student) -> None:
        x, y = await create_student(), await create_student()
        sent = await service.send_request(x.id, y.id)

        result = await service.cancel_request(uuid.UUID(sent.data["id"]), y.id)

        assert result.status_code == 403

    async def test_only_pending_can_be_cancelled(self, service, create_student) -> None:
        x, y = await create_student(), await create_student()
        sent = await service.send_request(x.id, y.id)
        request_id = uuid.UUID(sent.data["id"])
        await service.respond_to_request(request_id, y.id, "accept")

        result = await service.cancel_request(request_id, x.id)

        assert result.kind == "invalid_state"
        assert result.error == "Can only cancel pending requests"


# ---------------------------------------------------------------------------
# Unpairing
# ---------------------------------------------------------------------------


class TestUnpairStudents:
    async def test_dissolves_both_sides(self, service, create_student, fetch) -> None:
        first, second = await _paired(create_student)

        result = await service.unpair_students(first.id, second.id)

        assert result.success
        assert result.message == "Partnership dissolved successfully"
        for student_id in (first.id, second.id):
            row = await fetch(Student, student_id)
            assert row.partner_id is None
            assert row.partnership_status == "none"

    async def test_clears_partner_fields_on_live_applications(
        self,
        service,
        create_student,
        create_supervisor,
        create_application,
        fetch,
    ) -> None:
        first, second = await _paired(create_student)
        supervisor = await create_supervisor()
        live = await create_application(
            first.id, supervisor.id, has_partner=True, partner_id=second.id,
            partner_name=second.full_name, partner_email=second.email,
        )
        rejected = await create_application(
            first.id, supervisor.id, status="rejected", has_partner=True, partner_id=second.id,
        )

        await service.unpair_students(second.id, first.id)

        live_row = await fetch(Application, live.id)
        assert live_row.has_partner is False
        assert live_row.partner_id is None
        assert live_row.partner_name is None
        assert live_row.partner_email is None
        assert (await fetch(Application, rejected.id)).partner_id == second.id

    async def test_not_paired_with_this_student(self, service, create_student) -> None:
        first, _ = await _paired(create_student)
        stranger = await create_student()

        result = await service.unpair_students(first.id, stranger.id)

        assert result.kind == "invalid_state"
        assert result.error == "You are not paired with this student"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    async def test_requests_filtered_by_direction(self, service, create_student) -> None:
        me, a, b = await create_student(), await create_student(), await create_student()
        await service.send_request(me.id, a.id)
        await service.send_request(b.id, me.id)

        incoming = await service.get_partnership_requests(me.id, "incoming")
        outgoing = await service.get_partnership_requests(me.id, "outgoing")
        everything = await service.get_partnership_requests(me.id)

        assert [r["requester_id"] for r in incoming.data] == [str(b.id)]
        assert [r["target_student_id"] for r in outgoing.data] == [str(a.id)]
        assert len(everything.data) == 2

    async def test_unknown_request_type(self, service) -> None:
        result = await service.get_partnership_requests(uuid.uuid4(), "sideways")

        assert result.kind == "validation_error"

    async def test_available_students_exclude_self_and_paired(
        self, service, create_student
    ) -> None:
        me = await create_student(full_name="Alex Me")
        free = await create_student(full_name="Blair Free")
        await _paired(create_student)

        result = await service.get_available_students(me.id)

        assert [s["id"] for s in result.data] == [str(free.id)]
