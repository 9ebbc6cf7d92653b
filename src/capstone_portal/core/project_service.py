"""Project lifecycle changes.

Moving a project to ``completed`` emits the only cross-service event in
the workflow engine: the co-supervision attached to the project is
released through
:meth:`SupervisorPartnershipService.cleanup_partnerships_on_project_completion`.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from capstone_portal.core.clock import Clock, utc_now
from capstone_portal.core.database import run_in_transaction
from capstone_portal.core.event_bus import WorkflowEventPublisher
from capstone_portal.core.exceptions import ForbiddenError, InputValidationError
from capstone_portal.core.identity import Caller
from capstone_portal.core.models.enums import ProjectStatus
from capstone_portal.core.results import returns_result
from capstone_portal.core.schemas.projects import ProjectRead
from capstone_portal.core.supervisor_partnership_service import (
    SupervisorPartnershipService,
    load_project,
)

logger = logging.getLogger(__name__)

_VALID_STATUSES = frozenset(s.value for s in ProjectStatus)


class ProjectService:
    """Changes project status and triggers completion cleanup.

    Args:
        session_factory: Factory producing one session per unit of work.
        partnerships: Service that releases co-supervision on completion.
        events: Publisher for notification events.  Defaults to a no-op.
        clock: Source of ``completed_at`` timestamps.
        max_attempts: Transaction retry budget override.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        partnerships: SupervisorPartnershipService,
        *,
        events: Optional[WorkflowEventPublisher] = None,
        clock: Clock = utc_now,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._partnerships = partnerships
        self._events = events or WorkflowEventPublisher()
        self._clock = clock
        self._max_attempts = max_attempts

    @returns_result
    async def change_project_status(
        self,
        project_id: uuid.UUID,
        new_status: str,
        *,
        caller: Caller,
    ) -> dict:
        """Set a project's status; completing it releases any co-supervision.

        Returns:
            The updated project.
        """
        if new_status not in _VALID_STATUSES:
            raise InputValidationError(f"Unknown project status: {new_status}")

        async def _apply(session: AsyncSession):
            project = await load_project(session, project_id)
            if not caller.is_admin and project.supervisor_id != caller.uid:
                raise ForbiddenError("Only the project supervisor or an admin can change its status")
            old_status = project.status
            project.status = new_status
            if new_status == ProjectStatus.COMPLETED.value:
                if old_status != ProjectStatus.COMPLETED.value:
                    project.completed_at = self._clock()
            else:
                project.completed_at = None
            await session.flush()
            return old_status, project

        old_status, project = await run_in_transaction(
            self._session_factory,
            _apply,
            operation="change_project_status",
            max_attempts=self._max_attempts,
        )
        logger.info(
            "Project status changed",
            extra={
                "project_id": str(project_id),
                "old_status": old_status,
                "new_status": new_status,
                "changed_by": str(caller.uid),
            },
        )

        if new_status == ProjectStatus.COMPLETED.value:
            released = await self._partnerships.cleanup_partnerships_on_project_completion(
                project_id
            )
            if released:
                project.co_supervisor_id = None

        if old_status != new_status:
            await self._events.publish(
                "project.status_changed",
                project_id=str(project_id),
                old_status=old_status,
                new_status=new_status,
            )
        return ProjectRead.model_validate(project).model_dump(mode="json")
