"""Supervisor capacity ledger.

Capacity is the number of approved or co-supervised projects a supervisor
carries.  It is only ever changed inside a unit of work run by
:func:`~capstone_portal.core.database.run_in_transaction`, together with
the status change it backs:

  1. Re-read the supervisor through the transaction's session.
  2. Validate (``current_capacity < max_capacity`` to reserve).
  3. Mutate the ledger and the linked entity.
  4. Commit; a concurrent writer turns the commit into a retry.

``reserve_capacity`` and ``release_capacity`` implement steps 1-3 for the
ledger side and are shared by the application workflow and the supervisor
partnership service.  :class:`CapacityService` adds the admin operations:
``max_capacity`` overrides with an audit trail and reconciliation of
``current_capacity`` against approved applications.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from capstone_portal.api.metrics import capacity_rejections_total
from capstone_portal.core.clock import Clock, utc_now
from capstone_portal.core.database import run_in_transaction
from capstone_portal.core.exceptions import (
    CapacityExceededError,
    InputValidationError,
    SupervisorNotFoundError,
)
from capstone_portal.core.identity import Caller
from capstone_portal.core.models.application import Application
from capstone_portal.core.models.audit import CapacityChange
from capstone_portal.core.models.enums import ApplicationStatus, ProjectStatus, Role
from capstone_portal.core.models.project import Project
from capstone_portal.core.models.users import Supervisor
from capstone_portal.core.results import returns_result

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Ledger primitives (call only inside run_in_transaction)
# ---------------------------------------------------------------------------


async def load_supervisor(session: AsyncSession, supervisor_id: uuid.UUID) -> Supervisor:
    """Read the supervisor through *session*, bypassing any identity-map copy.

    Raises:
        SupervisorNotFoundError: If no such supervisor exists.
    """
    supervisor = await session.get(Supervisor, supervisor_id, populate_existing=True)
    if supervisor is None:
        raise SupervisorNotFoundError(supervisor_id)
    return supervisor


async def reserve_capacity(
    session: AsyncSession,
    supervisor_id: uuid.UUID,
    *,
    operation: str,
) -> Supervisor:
    """Take one unit of the supervisor's capacity.

    Raises:
        SupervisorNotFoundError: If the supervisor is missing.
        CapacityExceededError: If ``current_capacity >= max_capacity``.
    """
    supervisor = await load_supervisor(session, supervisor_id)
    if supervisor.current_capacity >= supervisor.max_capacity:
        capacity_rejections_total.labels(operation=operation).inc()
        raise CapacityExceededError(
            supervisor.current_capacity,
            supervisor.max_capacity,
            supervisor_id=supervisor_id,
        )
    supervisor.current_capacity += 1
    logger.info(
        "Capacity reserved",
        extra={
            "operation": operation,
            "supervisor_id": str(supervisor_id),
            "current_capacity": supervisor.current_capacity,
            "max_capacity": supervisor.max_capacity,
        },
    )
    return supervisor


async def release_capacity(
    session: AsyncSession,
    supervisor_id: uuid.UUID,
    *,
    operation: str,
) -> Supervisor:
    """Give back one unit of the supervisor's capacity, never going below zero.

    Raises:
        SupervisorNotFoundError: If the supervisor is missing.
    """
    supervisor = await load_supervisor(session, supervisor_id)
    if supervisor.current_capacity <= 0:
        logger.warning(
            "Capacity release on a supervisor already at zero",
            extra={"operation": operation, "supervisor_id": str(supervisor_id)},
        )
        supervisor.current_capacity = 0
    else:
        supervisor.current_capacity -= 1
    logger.info(
        "Capacity released",
        extra={
            "operation": operation,
            "supervisor_id": str(supervisor_id),
            "current_capacity": supervisor.current_capacity,
            "max_capacity": supervisor.max_capacity,
        },
    )
    return supervisor


def count_projects(applications: list[Application]) -> int:
    """Count the projects represented by a supervisor's approved applications.

    A solo application or a lead counts once.  A legacy non-lead row counts
    only when its linked partner row is not among *applications* (the pair is
    then represented by this row alone).
    """
    by_id = {app.id: app for app in applications}
    counted: set[uuid.UUID] = set()
    projects = 0
    for app in applications:
        if app.id in counted:
            continue
        counted.add(app.id)
        if app.linked_application_id is not None:
            linked = by_id.get(app.linked_application_id)
            if linked is not None:
                if linked.id in counted:
                    continue
                counted.add(linked.id)
        projects += 1
    return projects


# ---------------------------------------------------------------------------
# CapacityService
# ---------------------------------------------------------------------------


class CapacityService:
    """Admin-facing capacity operations.

    Args:
        session_factory: Factory producing one session per unit of work.
        max_supervisor_capacity: System ceiling for ``max_capacity``.
        clock: Source of audit timestamps.
        max_attempts: Transaction retry budget override.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_supervisor_capacity: int = 50,
        clock: Clock = utc_now,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._ceiling = max_supervisor_capacity
        self._clock = clock
        self._max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @returns_result
    async def get_capacity(self, supervisor_id: uuid.UUID) -> dict:
        async with self._session_factory() as session:
            supervisor = await load_supervisor(session, supervisor_id)
        return {
            "supervisor_id": str(supervisor.id),
            "current_capacity": supervisor.current_capacity,
            "max_capacity": supervisor.max_capacity,
            "available": max(supervisor.max_capacity - supervisor.current_capacity, 0),
        }

    # ------------------------------------------------------------------
    # Admin override
    # ------------------------------------------------------------------

    @returns_result
    async def override_max_capacity(
        self,
        supervisor_id: uuid.UUID,
        new_max_capacity: int,
        reason: str,
        *,
        caller: Caller,
    ) -> dict:
        """Set a supervisor's ``max_capacity`` and record why.

        The new maximum must lie between the supervisor's current capacity
        (read under the transaction, so a concurrent approval is taken into
        account) and the system ceiling.

        Returns:
            Dict with the previous and new maximum and the current capacity.
        """
        caller.require_role(Role.ADMIN)
        reason = (reason or "").strip()
        if not reason:
            raise InputValidationError("A reason is required for capacity changes")
        if new_max_capacity < 0 or new_max_capacity > self._ceiling:
            raise InputValidationError(
                f"Maximum capacity must be between 0 and {self._ceiling}"
            )

        async def _apply(session: AsyncSession) -> dict:
            supervisor = await load_supervisor(session, supervisor_id)
            if new_max_capacity < supervisor.current_capacity:
                raise InputValidationError(
                    "Maximum capacity cannot be lower than current capacity "
                    f"({supervisor.current_capacity})"
                )
            previous = supervisor.max_capacity
            supervisor.max_capacity = new_max_capacity
            session.add(
                CapacityChange(
                    supervisor_id=supervisor_id,
                    previous_max_capacity=previous,
                    new_max_capacity=new_max_capacity,
                    current_capacity=supervisor.current_capacity,
                    reason=reason,
                    changed_by=caller.uid,
                    changed_at=self._clock(),
                )
            )
            return {
                "supervisor_id": str(supervisor_id),
                "previous_max_capacity": previous,
                "max_capacity": new_max_capacity,
                "current_capacity": supervisor.current_capacity,
            }

        outcome = await run_in_transaction(
            self._session_factory,
            _apply,
            operation="override_max_capacity",
            max_attempts=self._max_attempts,
        )
        logger.info(
            "Supervisor max capacity overridden",
            extra={**outcome, "changed_by": str(caller.uid), "reason": reason},
        )
        return outcome

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _reconcile_one(self, supervisor_id: uuid.UUID) -> dict:
        async def _apply(session: AsyncSession) -> dict:
            supervisor = await load_supervisor(session, supervisor_id)
            approved = (
                await session.execute(
                    select(Application)
                    .where(Application.supervisor_id == supervisor_id)
                    .where(Application.status == ApplicationStatus.APPROVED.value)
                )
            ).scalars().all()
            co_supervised = (
                await session.execute(
                    select(Project.id)
                    .where(Project.co_supervisor_id == supervisor_id)
                    .where(Project.status != ProjectStatus.COMPLETED.value)
                )
            ).scalars().all()
            expected = count_projects(list(approved)) + len(co_supervised)
            previous = supervisor.current_capacity
            if previous != expected:
                supervisor.current_capacity = expected
            return {
                "supervisor_id": str(supervisor_id),
                "previous_capacity": previous,
                "current_capacity": expected,
                "max_capacity": supervisor.max_capacity,
                "changed": previous != expected,
            }

        return await run_in_transaction(
            self._session_factory,
            _apply,
            operation="reconcile_capacity",
            max_attempts=self._max_attempts,
        )

    @returns_result
    async def reconcile(
        self,
        *,
        caller: Caller,
        supervisor_id: Optional[uuid.UUID] = None,
    ) -> dict:
        """Recompute ``current_capacity`` from approved applications and co-supervisions.

        Each supervisor is reconciled in its own transaction.  Supervisors
        whose recomputed capacity exceeds ``max_capacity`` are reported but
        left for an admin to resolve.

        Returns:
            Dict with ``checked``, ``updated`` and the per-supervisor ``changes``.
        """
        caller.require_role(Role.ADMIN)
        if supervisor_id is not None:
            supervisor_ids = [supervisor_id]
        else:
            async with self._session_factory() as session:
                supervisor_ids = list(
                    (await session.execute(select(Supervisor.id))).scalars().all()
                )

        changes = []
        for sid in supervisor_ids:
            outcome = await self._reconcile_one(sid)
            if outcome["changed"]:
                changes.append(outcome)
                logger.info("Supervisor capacity reconciled", extra=outcome)
            if outcome["current_capacity"] > outcome["max_capacity"]:
                logger.warning("Supervisor over capacity after reconciliation", extra=outcome)

        return {
            "checked": len(supervisor_ids),
            "updated": len(changes),
            "changes": changes,
        }
