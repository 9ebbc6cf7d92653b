"""Application workflow: submission, status decisions, resubmission, withdrawal.

State machine::

    pending ⇄ under_review ──► approved | rejected | revision_requested
    revision_requested ──► pending            (resubmission only)
    approved, rejected                        (terminal; admin override only)

Every status change runs as one unit of work through
:func:`~capstone_portal.core.database.run_in_transaction`.  The unit
re-reads the application, re-validates the transition against the
committed status, and, when the application enters or leaves ``approved``
and is a lead row, moves the supervisor's capacity in the same commit.
Two concurrent approvals for a supervisor with one free slot therefore
serialize through the row-version check: one commits, the other is re-run
and fails with ``CapacityExceededError``.

Legacy linked applications (one row per partner, joined by
``linked_application_id``) are synchronised after the primary commit on a
best-effort basis: a failure there is logged and never undoes the primary
change.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from capstone_portal.api.metrics import (
    application_transitions_total,
    best_effort_failures_total,
)
from capstone_portal.core.capacity_ledger import (
    load_supervisor,
    release_capacity,
    reserve_capacity,
)
from capstone_portal.core.clock import Clock, utc_now
from capstone_portal.core.database import run_in_transaction
from capstone_portal.core.event_bus import WorkflowEventPublisher
from capstone_portal.core.exceptions import (
    DuplicateApplicationError,
    ForbiddenError,
    InputValidationError,
    InvalidStateError,
    NotFoundError,
)
from capstone_portal.core.identity import Caller
from capstone_portal.core.models.application import Application
from capstone_portal.core.models.enums import (
    DECIDED_APPLICATION_STATUSES,
    OPEN_APPLICATION_STATUSES,
    ApplicationStatus,
    Role,
)
from capstone_portal.core.models.users import Student
from capstone_portal.core.results import ServiceResult, returns_result
from capstone_portal.core.schemas.applications import ApplicationCreate, ApplicationRead

logger = logging.getLogger(__name__)

LINKED_REJECTION_NOTE = "Linked partner application was rejected"

# Transitions a supervisor may make through update_status.  Admins may make
# any transition except a return to pending after a decision.
_SUPERVISOR_TRANSITIONS: dict[str, frozenset[str]] = {
    ApplicationStatus.PENDING.value: frozenset({
        ApplicationStatus.UNDER_REVIEW.value,
        ApplicationStatus.APPROVED.value,
        ApplicationStatus.REJECTED.value,
        ApplicationStatus.REVISION_REQUESTED.value,
    }),
    ApplicationStatus.UNDER_REVIEW.value: frozenset({
        ApplicationStatus.PENDING.value,
        ApplicationStatus.APPROVED.value,
        ApplicationStatus.REJECTED.value,
        ApplicationStatus.REVISION_REQUESTED.value,
    }),
}

_VALID_STATUSES: frozenset[str] = frozenset(s.value for s in ApplicationStatus)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _serialize(application: Application) -> dict:
    return ApplicationRead.model_validate(application).model_dump(mode="json")


def validate_transition(old_status: str, new_status: str, caller: Caller) -> None:
    """Raise :class:`InvalidStateError` if *caller* may not move *old_status* to *new_status*."""
    if new_status == old_status:
        return
    if new_status == ApplicationStatus.PENDING.value and old_status in DECIDED_APPLICATION_STATUSES:
        raise InvalidStateError(
            "Cannot revert application back to pending status after a decision has been made"
        )
    if caller.is_admin:
        return
    if new_status not in _SUPERVISOR_TRANSITIONS.get(old_status, frozenset()):
        raise InvalidStateError(
            f"Cannot change application status from {old_status} to {new_status}"
        )


async def _load_application(session: AsyncSession, application_id: uuid.UUID) -> Application:
    application = await session.get(Application, application_id, populate_existing=True)
    if application is None:
        raise NotFoundError("Application", application_id)
    return application


async def load_linked_application(
    session: AsyncSession,
    application: Application,
) -> Optional[Application]:
    """Return the legacy partner row if the link is symmetric, else ``None``."""
    if application.linked_application_id is None:
        return None
    linked = await session.get(
        Application, application.linked_application_id, populate_existing=True
    )
    if linked is None:
        return None
    if linked.linked_application_id != application.id:
        logger.warning(
            "Ignoring asymmetric legacy application link",
            extra={
                "application_id": str(application.id),
                "linked_application_id": str(linked.id),
            },
        )
        return None
    return linked


def _authorize_decision(application: Application, caller: Caller) -> None:
    if caller.is_admin:
        return
    if caller.role != Role.SUPERVISOR or application.supervisor_id != caller.uid:
        raise ForbiddenError("Only the application's supervisor or an admin can update its status")


def _authorize_owner(application: Application, caller: Caller, action: str) -> None:
    if caller.is_admin:
        return
    if caller.role != Role.STUDENT or application.student_id != caller.uid:
        raise ForbiddenError(f"Only the student who submitted the application can {action} it")


# ---------------------------------------------------------------------------
# ApplicationWorkflow
# ---------------------------------------------------------------------------


class ApplicationWorkflow:
    """Owns the application state machine and the duplicate-application guard.

    Args:
        session_factory: Factory producing one session per unit of work.
        events: Publisher for notification events.  Defaults to a no-op.
        clock: Source of workflow timestamps.
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
    # Reads
    # ------------------------------------------------------------------

    async def check_duplicate_application(
        self,
        student_id: uuid.UUID,
        supervisor_id: uuid.UUID,
    ) -> bool:
        """Return ``True`` if the student already has an open application to the supervisor."""
        async with self._session_factory() as session:
            return await self._has_open_application(session, student_id, supervisor_id)

    @staticmethod
    async def _has_open_application(
        session: AsyncSession,
        student_id: uuid.UUID,
        supervisor_id: uuid.UUID,
    ) -> bool:
        stmt = (
            select(Application.id)
            .where(Application.student_id == student_id)
            .where(Application.supervisor_id == supervisor_id)
            .where(Application.status.in_(OPEN_APPLICATION_STATUSES))
            .limit(1)
        )
        return (await session.execute(stmt)).scalar_one_or_none() is not None

    @returns_result
    async def get_application(self, application_id: uuid.UUID, *, caller: Caller) -> dict:
        """Return one application visible to the caller.

        Visible to its student, the recorded partner, its supervisor and admins.
        """
        async with self._session_factory() as session:
            application = await _load_application(session, application_id)
        if not (
            caller.is_admin
            or caller.uid in (application.student_id, application.supervisor_id)
            or caller.uid == application.partner_id
        ):
            raise ForbiddenError("You do not have access to this application")
        return _serialize(application)

    @returns_result
    async def list_applications(
        self,
        *,
        caller: Caller,
        status: Optional[str] = None,
    ) -> list[dict]:
        """List applications relevant to the caller, newest first.

        Students see the applications they submitted and those naming them as
        partner; supervisors see applications addressed to them; admins see all.
        """
        if status is not None and status not in _VALID_STATUSES:
            raise InputValidationError(f"Unknown application status: {status}")
        stmt = select(Application).order_by(Application.date_applied.desc())
        if caller.role == Role.STUDENT:
            stmt = stmt.where(
                or_(Application.student_id == caller.uid, Application.partner_id == caller.uid)
            )
        elif caller.role == Role.SUPERVISOR:
            stmt = stmt.where(Application.supervisor_id == caller.uid)
        if status is not None:
            stmt = stmt.where(Application.status == status)
        async with self._session_factory() as session:
            applications = (await session.execute(stmt)).scalars().all()
        return [_serialize(app) for app in applications]

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @returns_result
    async def create_application(self, data: ApplicationCreate, *, caller: Caller):
        """Submit a new ``pending`` application.

        The student's current partner (if paired) is recorded on the row so a
        partnered pair is represented by this single lead application.

        Returns:
            ``ServiceResult`` whose data is ``{"id": <application id>}``.
        """
        if caller.role == Role.STUDENT:
            if data.student_id is not None and data.student_id != caller.uid:
                raise ForbiddenError("Students can only submit applications for themselves")
            student_id = caller.uid
        elif caller.is_admin:
            if data.student_id is None:
                raise InputValidationError("student_id is required when an admin submits")
            student_id = data.student_id
        else:
            raise ForbiddenError("Only students can submit applications")

        title = data.project_title.strip()
        if not title:
            raise InputValidationError("Project title is required")

        async def _create(session: AsyncSession) -> Application:
            student = await session.get(Student, student_id)
            if student is None:
                raise NotFoundError("Student", student_id)
            supervisor = await load_supervisor(session, data.supervisor_id)
            if not supervisor.is_active:
                raise InvalidStateError("This supervisor is not currently accepting applications")
            if await self._has_open_application(session, student_id, data.supervisor_id):
                raise DuplicateApplicationError()

            partner = None
            if student.is_paired and student.partner_id is not None:
                partner = await session.get(Student, student.partner_id)

            now = self._clock()
            application = Application(
                student_id=student_id,
                supervisor_id=data.supervisor_id,
                project_title=title,
                project_description=data.project_description,
                has_partner=partner is not None,
                partner_id=partner.id if partner is not None else None,
                partner_name=partner.full_name if partner is not None else None,
                partner_email=partner.email if partner is not None else None,
                is_lead_application=True,
                status=ApplicationStatus.PENDING.value,
                date_applied=now,
                last_updated=now,
            )
            session.add(application)
            await session.flush()
            return application

        try:
            application = await self._transact(_create, "create_application")
        except IntegrityError as exc:
            # Lost a race against a concurrent submission for the same pair.
            logger.info(
                "Duplicate application rejected by unique index",
                extra={"student_id": str(student_id), "supervisor_id": str(data.supervisor_id)},
            )
            raise DuplicateApplicationError() from exc

        logger.info(
            "Application created",
            extra={
                "application_id": str(application.id),
                "student_id": str(student_id),
                "supervisor_id": str(data.supervisor_id),
                "has_partner": application.has_partner,
            },
        )
        await self._events.publish(
            "application.created",
            application_id=str(application.id),
            student_id=str(student_id),
            supervisor_id=str(data.supervisor_id),
        )
        return ServiceResult.ok(
            data={"id": str(application.id)},
            message="Application submitted successfully",
            status_code=201,
        )

    # ------------------------------------------------------------------
    # Status decisions
    # ------------------------------------------------------------------

    @returns_result
    async def update_status(
        self,
        application_id: uuid.UUID,
        new_status: str,
        *,
        caller: Caller,
        feedback: Optional[str] = None,
    ) -> dict:
        """Apply a supervisor or admin decision to an application.

        Entering or leaving ``approved`` on a lead application reserves or
        releases one unit of the supervisor's capacity in the same commit.
        Rejecting also rejects a still-undecided legacy partner row, after
        the commit and on a best-effort basis.

        Returns:
            The updated application.
        """
        caller.require_role(Role.SUPERVISOR, Role.ADMIN)
        if new_status not in _VALID_STATUSES:
            raise InputValidationError(f"Unknown application status: {new_status}")

        async def _apply(session: AsyncSession) -> tuple[str, Application]:
            application = await _load_application(session, application_id)
            _authorize_decision(application, caller)
            old_status = application.status
            validate_transition(old_status, new_status, caller)

            is_approving = (
                new_status == ApplicationStatus.APPROVED.value
                and old_status != ApplicationStatus.APPROVED.value
            )
            is_unapproving = (
                old_status == ApplicationStatus.APPROVED.value
                and new_status != ApplicationStatus.APPROVED.value
            )
            if application.counts_toward_capacity:
                if is_approving:
                    await reserve_capacity(
                        session, application.supervisor_id, operation="approve_application"
                    )
                elif is_unapproving:
                    await release_capacity(
                        session, application.supervisor_id, operation="unapprove_application"
                    )

            now = self._clock()
            application.status = new_status
            application.last_updated = now
            if new_status in (ApplicationStatus.APPROVED.value, ApplicationStatus.REJECTED.value):
                application.response_date = now
            if feedback is not None:
                application.supervisor_feedback = feedback
            return old_status, application

        old_status, application = await self._transact(_apply, "update_application_status")

        application_transitions_total.labels(
            from_status=old_status, to_status=new_status
        ).inc()
        logger.info(
            "Application status updated",
            extra={
                "application_id": str(application_id),
                "old_status": old_status,
                "new_status": new_status,
                "updated_by": str(caller.uid),
            },
        )

        if (
            new_status == ApplicationStatus.REJECTED.value
            and old_status != ApplicationStatus.REJECTED.value
            and application.linked_application_id is not None
        ):
            await self._reject_linked_application(application_id, feedback)

        if old_status != new_status:
            await self._events.publish(
                "application.status_changed",
                application_id=str(application_id),
                student_id=str(application.student_id),
                supervisor_id=str(application.supervisor_id),
                old_status=old_status,
                new_status=new_status,
            )
        return _serialize(application)

    async def _reject_linked_application(
        self,
        application_id: uuid.UUID,
        feedback: Optional[str],
    ) -> None:
        """Reject the legacy partner row if it is still undecided; log on failure.

        A non-approved row never held capacity, so no ledger change is needed.
        """
        note = f"{feedback} ({LINKED_REJECTION_NOTE})" if feedback else LINKED_REJECTION_NOTE

        async def _apply(session: AsyncSession) -> Optional[uuid.UUID]:
            application = await _load_application(session, application_id)
            linked = await load_linked_application(session, application)
            if linked is None or linked.status not in (
                ApplicationStatus.PENDING.value,
                ApplicationStatus.UNDER_REVIEW.value,
            ):
                return None
            now = self._clock()
            linked.status = ApplicationStatus.REJECTED.value
            linked.supervisor_feedback = note
            linked.response_date = now
            linked.last_updated = now
            return linked.id

        try:
            linked_id = await self._transact(_apply, "reject_linked_application")
        except Exception:
            best_effort_failures_total.labels(step="reject_linked_application").inc()
            logger.exception(
                "Failed to auto-reject linked application",
                extra={"application_id": str(application_id)},
            )
            return
        if linked_id is not None:
            logger.info(
                "Linked application auto-rejected",
                extra={"application_id": str(application_id), "linked_application_id": str(linked_id)},
            )

    # ------------------------------------------------------------------
    # Resubmission
    # ------------------------------------------------------------------

    @returns_result
    async def resubmit_application(self, application_id: uuid.UUID, *, caller: Caller) -> dict:
        """Move a ``revision_requested`` application back to ``pending``.

        Returns:
            The updated application.
        """

        async def _apply(session: AsyncSession) -> Application:
            application = await _load_application(session, application_id)
            _authorize_owner(application, caller, "resubmit")
            if application.status != ApplicationStatus.REVISION_REQUESTED.value:
                raise InvalidStateError(
                    "Only applications with revision requested can be resubmitted "
                    f"(current status: {application.status})"
                )
            now = self._clock()
            application.status = ApplicationStatus.PENDING.value
            application.resubmitted_date = now
            application.last_updated = now
            return application

        application = await self._transact(_apply, "resubmit_application")
        application_transitions_total.labels(
            from_status=ApplicationStatus.REVISION_REQUESTED.value,
            to_status=ApplicationStatus.PENDING.value,
        ).inc()
        logger.info(
            "Application resubmitted",
            extra={"application_id": str(application_id), "resubmitted_by": str(caller.uid)},
        )

        if application.linked_application_id is not None:
            await self._resubmit_linked_application(application_id)

        await self._events.publish(
            "application.resubmitted",
            application_id=str(application_id),
            student_id=str(application.student_id),
            supervisor_id=str(application.supervisor_id),
        )
        return _serialize(application)

    async def _resubmit_linked_application(self, application_id: uuid.UUID) -> None:
        async def _apply(session: AsyncSession) -> Optional[uuid.UUID]:
            application = await _load_application(session, application_id)
            linked = await load_linked_application(session, application)
            if linked is None or linked.status != ApplicationStatus.REVISION_REQUESTED.value:
                return None
            now = self._clock()
            linked.status = ApplicationStatus.PENDING.value
            linked.resubmitted_date = now
            linked.last_updated = now
            return linked.id

        try:
            await self._transact(_apply, "resubmit_linked_application")
        except Exception:
            best_effort_failures_total.labels(step="resubmit_linked_application").inc()
            logger.exception(
                "Failed to resubmit linked application",
                extra={"application_id": str(application_id)},
            )

    # ------------------------------------------------------------------
    # Withdrawal
    # ------------------------------------------------------------------

    @returns_result
    async def withdraw_application(self, application_id: uuid.UUID, *, caller: Caller):
        """Delete an application.

        Students may withdraw their own application while it is ``pending``.
        Admins may delete any application; deleting an approved lead releases
        its capacity unless the legacy partner row is also approved, in which
        case the partner row becomes the lead and keeps the slot.
        """

        async def _apply(session: AsyncSession) -> Application:
            application = await _load_application(session, application_id)
            _authorize_owner(application, caller, "withdraw")
            if not caller.is_admin and application.status != ApplicationStatus.PENDING.value:
                raise InvalidStateError("Only pending applications can be withdrawn")

            linked = await load_linked_application(session, application)
            partner_keeps_slot = (
                linked is not None and linked.status == ApplicationStatus.APPROVED.value
            )
            if (
                application.status == ApplicationStatus.APPROVED.value
                and application.counts_toward_capacity
                and not partner_keeps_slot
            ):
                await release_capacity(
                    session, application.supervisor_id, operation="withdraw_application"
                )
            if linked is not None:
                linked.linked_application_id = None
                linked.is_lead_application = True
                linked.last_updated = self._clock()
                await session.flush()

            await session.delete(application)
            return application

        application = await self._transact(_apply, "withdraw_application")
        logger.info(
            "Application withdrawn",
            extra={
                "application_id": str(application_id),
                "status": application.status,
                "withdrawn_by": str(caller.uid),
            },
        )
        await self._events.publish(
            "application.withdrawn",
            application_id=str(application_id),
            student_id=str(application.student_id),
            supervisor_id=str(application.supervisor_id),
        )
        return ServiceResult.ok(
            data={"id": str(application_id)},
            message="Application withdrawn successfully",
        )
