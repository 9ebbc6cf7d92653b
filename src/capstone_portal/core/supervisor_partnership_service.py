"""Supervisor co-supervision requests and the ``Project.co_supervisor_id`` link.

Accepting a request attaches the target as co-supervisor and takes one
unit of their capacity in the same transaction
(:func:`~capstone_portal.core.capacity_ledger.reserve_capacity`).
Unpairing and project completion give it back.  Completion cleanup is
idempotent: the capacity is released together with clearing
``co_supervisor_id``, so a second run finds nothing to release.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from capstone_portal.api.metrics import best_effort_failures_total, capacity_rejections_total
from capstone_portal.core.capacity_ledger import (
    load_supervisor,
    release_capacity,
    reserve_capacity,
)
from capstone_portal.core.clock import Clock, utc_now
from capstone_portal.core.database import run_in_transaction
from capstone_portal.core.event_bus import WorkflowEventPublisher
from capstone_portal.core.exceptions import (
    AlreadyProcessedError,
    CapacityExceededError,
    DuplicateRequestError,
    ForbiddenError,
    InputValidationError,
    InvalidStateError,
    NotFoundError,
    SelfPartnershipBlockedError,
)
from capstone_portal.core.models.enums import ProjectStatus, RequestStatus
from capstone_portal.core.models.partnerships import SupervisorPartnershipRequest
from capstone_portal.core.models.project import Project
from capstone_portal.core.models.users import Supervisor
from capstone_portal.core.results import ServiceResult, returns_result
from capstone_portal.core.schemas.partnerships import SupervisorPartnershipRequestRead
from capstone_portal.core.schemas.projects import ProjectRead
from capstone_portal.core.schemas.supervisors import SupervisorCapacityRead

logger = logging.getLogger(__name__)

_REQUEST_LIST_TYPES = ("incoming", "outgoing", "all")
_RESPONSE_ACTIONS = ("accept", "reject")


async def load_project(session: AsyncSession, project_id: uuid.UUID) -> Project:
    project = await session.get(Project, project_id, populate_existing=True)
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


async def _load_request(
    session: AsyncSession,
    request_id: uuid.UUID,
) -> SupervisorPartnershipRequest:
    request = await session.get(SupervisorPartnershipRequest, request_id, populate_existing=True)
    if request is None:
        raise NotFoundError("Partnership request", request_id)
    return request


def _serialize_request(request: SupervisorPartnershipRequest) -> dict:
    return SupervisorPartnershipRequestRead.model_validate(request).model_dump(mode="json")


class SupervisorPartnershipService:
    """Owns co-supervision requests and co-supervisor capacity.

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
    async def send_request(
        self,
        requesting_supervisor_id: uuid.UUID,
        target_supervisor_id: uuid.UUID,
        project_id: uuid.UUID,
        message: Optional[str] = None,
    ):
        """Invite *target_supervisor_id* to co-supervise *project_id*.

        The capacity check here is advisory; acceptance re-checks it
        inside the capacity transaction.

        Returns:
            ``ServiceResult`` whose data is ``{"id": <request id>}``.
        """
        if requesting_supervisor_id == target_supervisor_id:
            raise SelfPartnershipBlockedError("You cannot send a partnership request to yourself")

        async def _send(session: AsyncSession) -> SupervisorPartnershipRequest:
            project = await load_project(session, project_id)
            target = await load_supervisor(session, target_supervisor_id)
            if project.supervisor_id != requesting_supervisor_id:
                raise ForbiddenError(
                    "Only the project supervisor can request a co-supervisor partnership"
                )
            if project.co_supervisor_id is not None:
                raise InvalidStateError("This project already has a co-supervisor")
            if project.status == ProjectStatus.COMPLETED.value:
                raise InvalidStateError("Cannot add a co-supervisor to a completed project")
            if not target.has_capacity:
                capacity_rejections_total.labels(operation="send_co_supervision_request").inc()
                raise CapacityExceededError(
                    target.current_capacity,
                    target.max_capacity,
                    supervisor_id=target_supervisor_id,
                )

            existing = (
                await session.execute(
                    select(SupervisorPartnershipRequest.id)
                    .where(SupervisorPartnershipRequest.project_id == project_id)
                    .where(SupervisorPartnershipRequest.target_supervisor_id == target_supervisor_id)
                    .where(SupervisorPartnershipRequest.status == RequestStatus.PENDING.value)
                    .limit(1)
                )
            ).scalar_one_or_none()
            if existing is not None:
                raise DuplicateRequestError(
                    "You already have a pending request with this supervisor for this project"
                )

            request = SupervisorPartnershipRequest(
                requesting_supervisor_id=requesting_supervisor_id,
                target_supervisor_id=target_supervisor_id,
                project_id=project_id,
                message=message,
                status=RequestStatus.PENDING.value,
                created_at=self._clock(),
            )
            session.add(request)
            # The project checks above only hold if no accept commits in between.
            flag_modified(project, "co_supervisor_id")
            await session.flush()
            return request

        try:
            request = await self._transact(_send, "send_co_supervision_request")
        except IntegrityError as exc:
            raise DuplicateRequestError(
                "You already have a pending request with this supervisor for this project"
            ) from exc

        logger.info(
            "Co-supervision request sent",
            extra={
                "request_id": str(request.id),
                "project_id": str(project_id),
                "requesting_supervisor_id": str(requesting_supervisor_id),
                "target_supervisor_id": str(target_supervisor_id),
            },
        )
        await self._events.publish(
            "co_supervision.request_sent",
            request_id=str(request.id),
            project_id=str(project_id),
            requesting_supervisor_id=str(requesting_supervisor_id),
            target_supervisor_id=str(target_supervisor_id),
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
        supervisor_id: uuid.UUID,
        action: str,
    ):
        """Accept or reject a co-supervision request addressed to *supervisor_id*."""
        if action not in _RESPONSE_ACTIONS:
            raise InputValidationError("Action must be 'accept' or 'reject'")

        async def _respond(session: AsyncSession) -> SupervisorPartnershipRequest:
            request = await _load_request(session, request_id)
            if request.target_supervisor_id != supervisor_id:
                raise ForbiddenError("Unauthorized to respond to this request")
            if request.status != RequestStatus.PENDING.value:
                raise AlreadyProcessedError(request.status)
            request.responded_at = self._clock()

            if action == "reject":
                request.status = RequestStatus.REJECTED.value
                return request

            project = await load_project(session, request.project_id)
            if project.supervisor_id != request.requesting_supervisor_id:
                raise InvalidStateError("Project supervisor has changed")
            if project.co_supervisor_id is not None:
                raise InvalidStateError("This project already has a co-supervisor")
            if project.status == ProjectStatus.COMPLETED.value:
                raise InvalidStateError("Cannot add a co-supervisor to a completed project")
            await reserve_capacity(session, supervisor_id, operation="accept_co_supervision")
            project.co_supervisor_id = supervisor_id
            request.status = RequestStatus.ACCEPTED.value
            return request

        request = await self._transact(_respond, f"{action}_co_supervision_request")
        logger.info(
            "Co-supervision request answered",
            extra={
                "request_id": str(request_id),
                "action": action,
                "project_id": str(request.project_id),
                "target_supervisor_id": str(supervisor_id),
            },
        )

        if action == "accept":
            await self._cancel_pending_for_project(request.project_id, exclude_id=request.id)

        await self._events.publish(
            "co_supervision.request_accepted"
            if action == "accept"
            else "co_supervision.request_rejected",
            request_id=str(request_id),
            project_id=str(request.project_id),
            requesting_supervisor_id=str(request.requesting_supervisor_id),
            target_supervisor_id=str(supervisor_id),
        )
        message = (
            "Partnership accepted successfully"
            if action == "accept"
            else "Partnership request rejected"
        )
        return ServiceResult.ok(data=_serialize_request(request), message=message)

    async def _cancel_pending_for_project(
        self,
        project_id: uuid.UUID,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Cancel the project's other pending requests; log on failure."""

        async def _cancel(session: AsyncSession) -> int:
            stmt = (
                select(SupervisorPartnershipRequest)
                .where(SupervisorPartnershipRequest.project_id == project_id)
                .where(SupervisorPartnershipRequest.status == RequestStatus.PENDING.value)
            )
            if exclude_id is not None:
                stmt = stmt.where(SupervisorPartnershipRequest.id != exclude_id)
            pending = (await session.execute(stmt)).scalars().all()
            now = self._clock()
            for request in pending:
                request.status = RequestStatus.CANCELLED.value
                request.responded_at = now
            return len(pending)

        try:
            cancelled = await self._transact(_cancel, "cancel_project_co_supervision_requests")
        except Exception:
            best_effort_failures_total.labels(step="cancel_project_requests").inc()
            logger.exception(
                "Failed to cancel pending co-supervision requests",
                extra={"project_id": str(project_id)},
            )
            return
        if cancelled:
            logger.info(
                "Cancelled pending co-supervision requests",
                extra={"project_id": str(project_id), "cancelled": cancelled},
            )

    # ------------------------------------------------------------------
    # Cancelling
    # ------------------------------------------------------------------

    @returns_result
    async def cancel_request(self, request_id: uuid.UUID, supervisor_id: uuid.UUID):
        """Withdraw a pending request sent by *supervisor_id*."""

        async def _cancel(session: AsyncSession) -> SupervisorPartnershipRequest:
            request = await _load_request(session, request_id)
            if request.requesting_supervisor_id != supervisor_id:
                raise ForbiddenError("Unauthorized to cancel this request")
            if request.status != RequestStatus.PENDING.value:
                raise InvalidStateError("Can only cancel pending requests")
            request.status = RequestStatus.CANCELLED.value
            request.responded_at = self._clock()
            return request

        request = await self._transact(_cancel, "cancel_co_supervision_request")
        logger.info(
            "Co-supervision request cancelled",
            extra={"request_id": str(request_id), "requesting_supervisor_id": str(supervisor_id)},
        )
        return ServiceResult.ok(
            data=_serialize_request(request),
            message="Partnership request cancelled",
        )

    # ------------------------------------------------------------------
    # Unpairing and completion cleanup
    # ------------------------------------------------------------------

    async def _detach_co_supervisor(
        self,
        session: AsyncSession,
        project: Project,
        operation: str,
    ) -> uuid.UUID:
        co_supervisor_id = project.co_supervisor_id
        try:
            await release_capacity(session, co_supervisor_id, operation=operation)
        except NotFoundError:
            logger.warning(
                "Co-supervisor row missing while detaching",
                extra={"project_id": str(project.id), "co_supervisor_id": str(co_supervisor_id)},
            )
        project.co_supervisor_id = None
        return co_supervisor_id

    @returns_result
    async def unpair_co_supervisor(self, project_id: uuid.UUID, caller_id: uuid.UUID):
        """Remove the co-supervisor from a project and release their capacity.

        Only the project's primary supervisor may do this.
        """

        async def _unpair(session: AsyncSession) -> uuid.UUID:
            project = await load_project(session, project_id)
            if project.supervisor_id != caller_id:
                raise ForbiddenError("Only the project supervisor can remove the co-supervisor")
            if project.co_supervisor_id is None:
                raise InvalidStateError("This project has no co-supervisor")
            return await self._detach_co_supervisor(session, project, "unpair_co_supervisor")

        co_supervisor_id = await self._transact(_unpair, "unpair_co_supervisor")
        logger.info(
            "Co-supervisor removed",
            extra={"project_id": str(project_id), "co_supervisor_id": str(co_supervisor_id)},
        )
        await self._events.publish(
            "co_supervision.dissolved",
            project_id=str(project_id),
            co_supervisor_id=str(co_supervisor_id),
        )
        return ServiceResult.ok(message="Co-supervisor removed successfully")

    async def cleanup_partnerships_on_project_completion(self, project_id: uuid.UUID) -> bool:
        """Release a completed project's co-supervision.  Safe to call repeatedly.

        Never raises; failures are logged and counted.

        Returns:
            ``True`` if a co-supervisor was released by this call.
        """

        async def _cleanup(session: AsyncSession) -> Optional[uuid.UUID]:
            project = await load_project(session, project_id)
            if project.co_supervisor_id is None:
                return None
            return await self._detach_co_supervisor(session, project, "project_completion")

        try:
            released = await self._transact(_cleanup, "project_completion_cleanup")
        except Exception:
            best_effort_failures_total.labels(step="project_completion_cleanup").inc()
            logger.exception(
                "Co-supervision cleanup failed",
                extra={"project_id": str(project_id)},
            )
            return False

        await self._cancel_pending_for_project(project_id)
        if released is None:
            logger.debug(
                "No co-supervision to clean up",
                extra={"project_id": str(project_id)},
            )
            return False
        logger.info(
            "Co-supervision released on project completion",
            extra={"project_id": str(project_id), "co_supervisor_id": str(released)},
        )
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @returns_result
    async def get_partnership_requests(
        self,
        supervisor_id: uuid.UUID,
        type: str = "all",
    ) -> list[dict]:
        """Return the supervisor's pending requests, newest first."""
        if type not in _REQUEST_LIST_TYPES:
            raise InputValidationError("type must be one of: incoming, outgoing, all")
        incoming = SupervisorPartnershipRequest.target_supervisor_id == supervisor_id
        outgoing = SupervisorPartnershipRequest.requesting_supervisor_id == supervisor_id
        involvement = {"incoming": incoming, "outgoing": outgoing, "all": or_(incoming, outgoing)}
        stmt = (
            select(SupervisorPartnershipRequest)
            .where(SupervisorPartnershipRequest.status == RequestStatus.PENDING.value)
            .where(involvement[type])
            .order_by(SupervisorPartnershipRequest.created_at.desc())
        )
        async with self._session_factory() as session:
            requests = (await session.execute(stmt)).scalars().all()
        return [_serialize_request(r) for r in requests]

    @returns_result
    async def get_active_partnerships(self, supervisor_id: uuid.UUID) -> list[dict]:
        """Return non-completed co-supervised projects the supervisor is part of."""
        stmt = (
            select(Project)
            .where(Project.co_supervisor_id.is_not(None))
            .where(Project.status != ProjectStatus.COMPLETED.value)
            .where(
                or_(
                    Project.supervisor_id == supervisor_id,
                    Project.co_supervisor_id == supervisor_id,
                )
            )
            .order_by(Project.created_at.desc())
        )
        async with self._session_factory() as session:
            projects = (await session.execute(stmt)).scalars().all()
        return [ProjectRead.model_validate(p).model_dump(mode="json") for p in projects]

    @returns_result
    async def get_available_partners(self, supervisor_id: uuid.UUID) -> list[dict]:
        """Return other active supervisors with spare capacity, by name."""
        stmt = (
            select(Supervisor)
            .where(
                and_(
                    Supervisor.id != supervisor_id,
                    Supervisor.is_active.is_(True),
                    Supervisor.current_capacity < Supervisor.max_capacity,
                )
            )
            .order_by(Supervisor.full_name)
        )
        async with self._session_factory() as session:
            supervisors = (await session.execute(stmt)).scalars().all()
        return [
            SupervisorCapacityRead.model_validate(s).model_dump(mode="json")
            for s in supervisors
        ]
