"""Application-wide exception hierarchy for Capstone Portal.

All custom exceptions subclass ``CapstonePortalError``.  Workflow errors
carry an error ``kind`` and the HTTP status the API layer maps them to.
Public service methods convert them into failed ``ServiceResult`` values
(see :mod:`capstone_portal.core.results`); only infrastructure errors are
allowed to propagate to the FastAPI exception handlers.

Hierarchy::

    CapstonePortalError
    ├── WorkflowError
    │   ├── InputValidationError          400
    │   ├── UnauthenticatedError          401
    │   ├── ForbiddenError                403
    │   ├── NotFoundError                 404
    │   │   └── SupervisorNotFoundError
    │   └── BusinessRuleError             400
    │       ├── DuplicateApplicationError
    │       ├── DuplicateRequestError
    │       ├── SelfPartnershipBlockedError
    │       ├── AlreadyPairedError
    │       ├── AlreadyProcessedError
    │       ├── InvalidStateError
    │       └── CapacityExceededError     (current: int, maximum: int)
    └── TransientConflictError            409  (attempts: int)
"""

from __future__ import annotations

from typing import ClassVar


class CapstonePortalError(Exception):
    """Base class for all Capstone Portal exceptions.

    Callers can catch the entire hierarchy with a single ``except`` clause
    when needed.
    """


# ---------------------------------------------------------------------------
# Workflow (business and validation) exceptions
# ---------------------------------------------------------------------------


class WorkflowError(CapstonePortalError):
    """Base class for failures that are part of normal workflow outcomes.

    Subclasses set ``kind`` (a stable machine-readable identifier) and
    ``status_code`` (the HTTP status used by the error envelope).

    Args:
        message: Human-readable description shown to the caller.
    """

    kind: ClassVar[str] = "workflow_error"
    status_code: ClassVar[int] = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputValidationError(WorkflowError):
    """Raised when request input is malformed or out of range."""

    kind = "validation_error"


class UnauthenticatedError(WorkflowError):
    """Raised when no valid bearer credential accompanies a request."""

    kind = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(WorkflowError):
    """Raised when the caller lacks the role or ownership an operation needs."""

    kind = "forbidden"
    status_code = 403


class NotFoundError(WorkflowError):
    """Raised when a referenced entity does not exist.

    Args:
        entity: Entity label used in the message (e.g. ``"Application"``).
        entity_id: Identifier that was looked up.
    """

    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: object | None = None) -> None:
        message = f"{entity} not found"
        if entity_id is not None:
            message += f": {entity_id}"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class SupervisorNotFoundError(NotFoundError):
    """Raised by the capacity transaction when the supervisor row is missing."""

    def __init__(self, supervisor_id: object | None = None) -> None:
        super().__init__("Supervisor", supervisor_id)


# ---------------------------------------------------------------------------
# Business-rule exceptions
# ---------------------------------------------------------------------------


class BusinessRuleError(WorkflowError):
    """Base class for business-rule violations (HTTP 400)."""

    kind = "business_rule"


class DuplicateApplicationError(BusinessRuleError):
    """Raised when a student already has an open application to a supervisor."""

    kind = "duplicate_application"

    def __init__(
        self,
        message: str = "You already have an active application to this supervisor",
    ) -> None:
        super().__init__(message)


class DuplicateRequestError(BusinessRuleError):
    """Raised when a pending partnership request already exists for the pair."""

    kind = "duplicate_request"


class SelfPartnershipBlockedError(BusinessRuleError):
    """Raised when a user tries to partner with themselves."""

    kind = "self_partnership_blocked"


class AlreadyPairedError(BusinessRuleError):
    """Raised when either student in a proposed pairing already has a partner."""

    kind = "already_paired"


class AlreadyProcessedError(BusinessRuleError):
    """Raised when responding to a request that is no longer pending.

    Args:
        current_status: The request's status at the time of the response.
    """

    kind = "already_processed"

    def __init__(self, current_status: str) -> None:
        super().__init__(f"This request has already been {current_status}")
        self.current_status = current_status


class InvalidStateError(BusinessRuleError):
    """Raised when an entity is not in a state that permits the operation."""

    kind = "invalid_state"


class CapacityExceededError(BusinessRuleError):
    """Raised when approving would push a supervisor past ``max_capacity``.

    Args:
        current: The supervisor's ``current_capacity`` read under the transaction.
        maximum: The supervisor's ``max_capacity``.
        supervisor_id: Identifier of the supervisor (for logging).
    """

    kind = "capacity_exceeded"

    def __init__(
        self,
        current: int,
        maximum: int,
        supervisor_id: object | None = None,
    ) -> None:
        super().__init__(
            f"Supervisor has reached maximum capacity ({current}/{maximum})"
        )
        self.current = current
        self.maximum = maximum
        self.supervisor_id = supervisor_id


# ---------------------------------------------------------------------------
# Infrastructure exceptions
# ---------------------------------------------------------------------------


class TransientConflictError(CapstonePortalError):
    """Raised when a transaction could not commit within its retry budget.

    The whole request is safe to retry.

    Args:
        attempts: Number of attempts made before giving up.
    """

    kind: ClassVar[str] = "transient_conflict"
    status_code: ClassVar[int] = 409

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"The operation conflicted with a concurrent update after {attempts} "
            "attempts; please retry"
        )
        self.attempts = attempts
