"""Student-to-student partnership requests and pairing.

A student may hold at most one partner.  Pairing is formed by accepting a
request and dissolved by either partner; both sides of the pair are always
written in the same transaction so ``partner_id`` stays symmetric.

``Student.partnership_status`` is derived from the request rows: after any
request leaves ``pending`` the affected students are re-derived as
``pending_sent`` (still has an outgoing request), ``pending_received``
(still has an incoming one) or ``none``.  Paired students are left alone.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from capstone_portal.api.metrics import best_effort_failures_total
from capstone_portal.core.clock import Clock, utc_now
from capstone_portal.core.database import run_in_transaction
from capstone_portal.core.event_bus import WorkflowEventPublisher
from capstone_portal.core.exceptions import (
    AlreadyPairedError,
    AlreadyProcessedError,
    DuplicateRequestError,
    ForbiddenError,
    InputValidationError,
    InvalidStateError,
    NotFoundError,
    SelfPartnershipBlockedError,
)
from capstone_portal.core.models.application import Application
from capstone_portal.core.models.enums import (
    OPEN_APPLICATION_STATUSES,
    ApplicationStatus,
    PartnershipStatus,
    RequestStatus,
)
from capstone_portal.core.models.partnerships import (
    StudentPartnershipRequest,
    student_pair_key,
)
from capstone_portal.core.models.users import Student
from capstone_portal.core.results import ServiceResult, returns_result
from capstone_portal.core.schemas.partnerships import (
    StudentPartnershipRequestRead,
    StudentSummary,
)

logger = logging.getLogger(__name__)

_REQUEST_LIST_TYPES = ("incoming", "outgoing", "all")
_RESPONSE_ACTIONS = ("accept", "reject")

# Applications whose partner snapshot is cleared when a pair dissolves.
_PARTNER_SYNC_STATUSES = OPEN_APPLICATION_STATUSES | {ApplicationStatus.APPROVED.value}


async def _load_student(session: AsyncSession, student_id: uuid.UUID) -> Student:
    student = await session.get(Student, student_id, populate_existing=True)
    if student is None:
        raise NotFoundError("Student", student_id)
    return student


async def _load_request(
    session: AsyncSession,
    request_id: uuid.UUID,
) -> StudentPartnershipRequest:
    request = await session.get(StudentPartnershipRequest, request_id, populate_existing=True)
    if request is None:
        raise NotFoundError("Partnership request", request_id)
    return request


async def _refresh_partnership_status(session: AsyncSession, student: Student) -> None:
    """Re-derive an unpaired student's status from their remaining pending requests."""
    if student.is_paired:
        return
    await session.flush()
    pending = (
        await session.execute(
            select(StudentPartnershipRequest)
            .where(StudentPartnershipRequest.status == RequestStatus.PENDING.value)
            .where(
                or_(
                    StudentPartnershipRequest.requester_id == student.id,
                    StudentPartnershipRequest.target_student_id == student.id,
                )
            )
        )
    ).scalars().all()
    if any(r.requester_id == student.id for r in pending):
        status = PartnershipStatus.PENDING_SENT.value
    elif pending:
        status = PartnershipStatus.PENDING_RECEIVED.value
    else:
        status = PartnershipStatus.NONE.value
    if student.partnership_status != status:
        student.partnership_status = status


def _serialize_request(request: StudentPartnershipRequest) -> dict:
    return StudentPartnershipRequestRead.model_validate(request).model_dump(mode="json")


class StudentPartnershipService:
    """Owns student partnership requests and the paired state on ``Student``.

    Args:
        session_factory: Factory producing one session per unit of work.
        events: Publisher for notification events.  Defaults to a no-op.
        clock: Source of request timestamps.
        max_attempts: Transaction retry budget override.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        events: Optional[WorkflowEventPublisher] = None,
        clock: Clock = utc_now,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._events = events or WorkflowEventPublisher()
        self._clock = clock
        self._max_attempts = max_attempts

    async def _transact(self, work, operation: str):
        return await run_in_transaction(
            self._session_factory,
            work,
            operation=operation,
            max_attempts=self._max_attempts,
        )

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    @returns_result
    async def send_request(self, requester_id: uuid.UUID, target_student_id: uuid.UUID):
        """Propose a partnership from *requester_id* to *target_student_id*.

        Returns:
            ``ServiceResult`` whose data is ``{"id": <request id>}``.
        """
        if requester_id == target_student_id:
            raise SelfPartnershipBlockedError("You cannot send a partnership request to yourself")

        async def _send(session: AsyncSession) -> StudentPartnershipRequest:
            requester = await _load_student(session, requester_id)
            target = await _load_student(session, target_student_id)
            if requester.is_paired:
                raise AlreadyPairedError("You are already paired with another student")
            if target.is_paired:
                raise AlreadyPairedError("Target student is already paired")

            pending = (
                await session.execute(
                    select(StudentPartnershipRequest)
                    .where(
                        StudentPartnershipRequest.pair_key
                        == student_pair_key(requester_id, target_student_id)
                    )
                    .where(StudentPartnershipRequest.status == RequestStatus.PENDING.value)
                )
            ).scalars().first()
            if pending is not None:
                if pending.requester_id == requester_id:
                    raise DuplicateRequestError(
                        "You already have a pending request with this student"
                    )
                raise DuplicateRequestError(
                    "This student has already sent you a request. Check your incoming requests."
                )

            request = StudentPartnershipRequest(
                requester_id=requester_id,
                target_student_id=target_student_id,
                pair_key=student_pair_key(requester_id, target_student_id),
                status=RequestStatus.PENDING.value,
                created_at=self._clock(),
            )
            session.add(request)
            requester.partnership_status = PartnershipStatus.PENDING_SENT.value
            target.partnership_status = PartnershipStatus.PENDING_RECEIVED.value
            # Bump both versions even when the status is unchanged, so a concurrent
            # accept that pairs either student forces one side to re-run.
            flag_modified(requester, "partnership_status")
            flag_modified(target, "partnership_status")
            await session.flush()
            return request

        try:
            request = await self._transact(_send, "send_partnership_request")
        except IntegrityError as exc:
            raise DuplicateRequestError(
                "A pending request between these students already exists"
            ) from exc

        logger.info(
            "Partnership request sent",
            extra={
                "request_id": str(request.id),
                "requester_id": str(requester_id),
                "target_student_id": str(target_student_id),
            },
        )
        await self._events.publish(
            "partnership.request_sent",
            request_id=str(request.id),
            requester_id=str(requester_id),
            target_student_id=str(target_student_id),
        )
        return ServiceResult.ok(
            data={"id": str(request.id)},
            message="Partnership request created successfully",
            status_code=201,
        )

    # ------------------------------------------------------------------
    # Responding
    # ------------------------------------------------------------------

    @returns_result
    async def respond_to_request(
        self,
        request_id: uuid.UUID,
        user_id: uuid.UUID,
        action: str,
    ):
        """Accept or reject a pending request addressed to *user_id*.

        Accepting pairs both students and cancels every other pending request
        involving either of them, all in one transaction.
        """
        if action not in _RESPONSE_ACTIONS:
            raise InputValidationError("Action must be 'accept' or 'reject'")

        async def _respond(session: AsyncSession) -> StudentPartnershipRequest:
            request = await _load_request(session, request_id)
            if request.target_student_id != user_id:
                raise ForbiddenError("Unauthorized to respond to this request")
            if request.status != RequestStatus.PENDING.value:
                raise AlreadyProcessedError(request.status)

            requester = await _load_student(session, request.requester_id)
            target = await _load_student(session, request.target_student_id)
            now = self._clock()
            request.responded_at = now

            if action == "reject":
                request.status = RequestStatus.REJECTED.value
                await _refresh_partnership_status(session, requester)
                await _refresh_partnership_status(session, target)
                return request

            if requester.is_paired or target.is_paired:
                raise AlreadyPairedError("One of the students is already paired")
            requester.partner_id = target.id
            requester.partnership_status = PartnershipStatus.PAIRED.value
            target.partner_id = requester.id
            target.partnership_status = PartnershipStatus.PAIRED.value
            request.status = RequestStatus.ACCEPTED.value
            await self._cancel_other_requests(session, request, (requester.id, target.id))
            return request

        request = await self._transact(_respond, f"{action}_partnership_request")
        logger.info(
            "Partnership request answered",
            extra={
                "request_id": str(request_id),
                "action": action,
                "requester_id": str(request.requester_id),
                "target_student_id": str(request.target_student_id),
            },
        )
        await self._events.publish(
            "partnership.request_accepted" if action == "accept" else "partnership.request_rejected",
            request_id=str(request_id),
            requester_id=str(request.requester_id),
            target_student_id=str(request.target_student_id),
        )
        message = (
            "Partnership accepted successfully"
            if action == "accept"
            else "Partnership request rejected"
        )
        return ServiceResult.ok(data=_serialize_request(request), message=message)

    async def _cancel_other_requests(
        self,
        session: AsyncSession,
        accepted: StudentPartnershipRequest,
        paired_ids: Iterable[uuid.UUID],
    ) -> None:
        paired_ids = tuple(paired_ids)
        others = (
            await session.execute(
                select(StudentPartnershipRequest)
                .where(StudentPartnershipRequest.status == RequestStatus.PENDING.value)
                .where(StudentPartnershipRequest.id != accepted.id)
                .where(
                    or_(
                        StudentPartnershipRequest.requester_id.in_(paired_ids),
                        StudentPartnershipRequest.target_student_id.in_(paired_ids),
                    )
                )
            )
        ).scalars().all()
        if not others:
            return

        now = self._clock()
        counterparts: set[uuid.UUID] = set()
        for other in others:
            other.status = RequestStatus.CANCELLED.value
            other.responded_at = now
            counterparts.update({other.requester_id, other.target_student_id})
        counterparts.difference_update(paired_ids)

        for student_id in sorted(counterparts, key=str):
            student = await session.get(Student, student_id, populate_existing=True)
            if student is not None:
                await _refresh_partnership_status(session, student)
        logger.info(
            "Cancelled competing partnership requests",
            extra={"request_id": str(accepted.id), "cancelled": len(others)},
        )

    # ------------------------------------------------------------------
    # Cancelling
    # ------------------------------------------------------------------

    @returns_result
    async def cancel_request(self, request_id: uuid.UUID, user_id: uuid.UUID):
        """Withdraw a pending request sent by *user_id*."""

        async def _cancel(session: AsyncSession) -> StudentPartnershipRequest:
            request = await _load_request(session, request_id)
            if request.requester_id != user_id:
                raise ForbiddenError("Unauthorized to cancel this request")
            if request.status != RequestStatus.PENDING.value:
                raise InvalidStateError("Can only cancel pending requests")
            request.status = RequestStatus.CANCELLED.value
            request.responded_at = self._clock()
            for student_id in (request.requester_id, request.target_student_id):
                student = await session.get(Student, student_id, populate_existing=True)
                if student is not None:
                    await _refresh_partnership_status(session, student)
            return request

        request = await self._transact(_cancel, "cancel_partnership_request")
        logger.info(
            "Partnership request cancelled",
            extra={"request_id": str(request_id), "requester_id": str(user_id)},
        )
        return ServiceResult.ok(
            data=_serialize_request(request),
            message="Partnership request cancelled",
        )

    # ------------------------------------------------------------------
    # Unpairing
    # ------------------------------------------------------------------

    @returns_result
    async def unpair_students(self, user_id: uuid.UUID, partner_id: uuid.UUID):
        """Dissolve the pairing between *user_id* and *partner_id*.

        Both students are cleared in one transaction.  Partner snapshots on
        their live applications are cleared afterwards on a best-effort basis.
        """

        async def _unpair(session: AsyncSession) -> None:
            student = await _load_student(session, user_id)
            partner = await _load_student(session, partner_id)
            if not (
                student.is_paired
                and partner.is_paired
                and student.partner_id == partner_id
                and partner.partner_id == user_id
            ):
                raise InvalidStateError("You are not paired with this student")
            for side in (student, partner):
                side.partner_id = None
                side.partnership_status = PartnershipStatus.NONE.value

        await self._transact(_unpair, "unpair_students")
        logger.info(
            "Students unpaired",
            extra={"student_id": str(user_id), "partner_id": str(partner_id)},
        )
        await self._clear_application_partner_fields(user_id, partner_id)
        await self._events.publish(
            "partnership.dissolved",
            student_id=str(user_id),
            partner_id=str(partner_id),
        )
        return ServiceResult.ok(message="Partnership dissolved successfully")

    async def _clear_application_partner_fields(
        self,
        student_id: uuid.UUID,
        partner_id: uuid.UUID,
    ) -> None:
        async def _clear(session: AsyncSession) -> int:
            applications = (
                await session.execute(
                    select(Application)
                    .where(Application.status.in_(_PARTNER_SYNC_STATUSES))
                    .where(
                        or_(
                            (Application.student_id == student_id)
                            & (Application.partner_id == partner_id),
                            (Application.student_id == partner_id)
                            & (Application.partner_id == student_id),
                        )
                    )
                )
            ).scalars().all()
            now = self._clock()
            for application in applications:
                application.has_partner = False
                application.partner_id = None
                application.partner_name = None
                application.partner_email = None
                application.last_updated = now
            return len(applications)

        try:
            cleared = await self._transact(_clear, "clear_application_partner_fields")
        except Exception:
            best_effort_failures_total.labels(step="clear_application_partner_fields").inc()
            logger.exception(
                "Failed to clear partner fields on applications",
                extra={"student_id": str(student_id), "partner_id": str(partner_id)},
            )
            return
        if cleared:
            logger.info(
                "Cleared partner fields on applications",
                extra={"student_id": str(student_id), "applications": cleared},
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @returns_result
    async def get_partnership_requests(self, student_id: uuid.UUID, type: str = "all") -> list[dict]:
        """Return the student's pending requests, newest first.

        Args:
            student_id: Student whose requests are listed.
            type: ``incoming``, ``outgoing`` or ``all``.
        """
        if type not in _REQUEST_LIST_TYPES:
            raise InputValidationError("type must be one of: incoming, outgoing, all")
        if type == "incoming":
            involvement = StudentPartnershipRequest.target_student_id == student_id
        elif type == "outgoing":
            involvement = StudentPartnershipRequest.requester_id == student_id
        else:
            involvement = or_(
                StudentPartnershipRequest.target_student_id == student_id,
                StudentPartnershipRequest.requester_id == student_id,
            )
        stmt = (
            select(StudentPartnershipRequest)
            .where(StudentPartnershipRequest.status == RequestStatus.PENDING.value)
            .where(involvement)
            .order_by(StudentPartnershipRequest.created_at.desc())
        )
        async with self._session_factory() as session:
            requests = (await session.execute(stmt)).scalars().all()
        return [_serialize_request(r) for r in requests]

    @returns_result
    async def get_available_students(self, student_id: uuid.UUID) -> list[dict]:
        """Return unpaired students other than *student_id*, by name."""
        stmt = (
            select(Student)
            .where(Student.partnership_status != PartnershipStatus.PAIRED.value)
            .where(Student.id != student_id)
            .order_by(Student.full_name)
        )
        async with self._session_factory() as session:
            students = (await session.execute(stmt)).scalars().all()
        return [StudentSummary.model_validate(s).model_dump(mode="json") for s in students]
