"""Typed result envelope returned by public workflow service methods.

Business-rule and validation failures never cross the service boundary as
exceptions: methods decorated with :func:`returns_result` convert any
:class:`~capstone_portal.core.exceptions.WorkflowError` into a failed
:class:`ServiceResult`.  Infrastructure errors (database unreachable,
:class:`~capstone_portal.core.exceptions.TransientConflictError`) still
propagate and are handled by the API layer.

Usage::

    result = await workflow.update_status(app_id, "approved", caller=caller)
    if not result.success:
        logger.info("Approval refused", extra={"kind": result.kind})
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from capstone_portal.core.exceptions import WorkflowError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    """Outcome of a workflow operation.

    Attributes:
        success: ``True`` when the operation completed.
        data: Operation payload on success.
        message: Optional human-readable confirmation on success.
        error: Human-readable failure description.
        kind: Stable error identifier (e.g. ``"capacity_exceeded"``).
        status_code: HTTP status the API layer should use.
    """

    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    error: Optional[str] = None
    kind: Optional[str] = None
    status_code: int = 200

    @classmethod
    def ok(
        cls,
        data: Optional[T] = None,
        message: Optional[str] = None,
        status_code: int = 200,
    ) -> ServiceResult[T]:
        return cls(success=True, data=data, message=message, status_code=status_code)

    @classmethod
    def fail(cls, exc: WorkflowError) -> ServiceResult[Any]:
        return cls(
            success=False,
            error=exc.message,
            kind=exc.kind,
            status_code=exc.status_code,
        )

    def to_envelope(self) -> dict[str, Any]:
        """Render the JSON envelope sent to HTTP callers."""
        if not self.success:
            return {"success": False, "error": self.error}
        envelope: dict[str, Any] = {"success": True}
        if self.data is not None:
            envelope["data"] = self.data
        if self.message is not None:
            envelope["message"] = self.message
        return envelope


def returns_result(
    func: Callable[..., Awaitable[Any]],
) -> Callable[..., Awaitable[ServiceResult[Any]]]:
    """Wrap an async service method so workflow errors become failed results.

    A plain return value is wrapped in :meth:`ServiceResult.ok`; a returned
    ``ServiceResult`` passes through untouched.
    """

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> ServiceResult[Any]:
        try:
            value = await func(*args, **kwargs)
        except WorkflowError as exc:
            logger.info(
                "Workflow operation refused",
                extra={
                    "operation": func.__qualname__,
                    "kind": exc.kind,
                    "reason": exc.message,
                },
            )
            return ServiceResult.fail(exc)
        if isinstance(value, ServiceResult):
            return value
        return ServiceResult.ok(value)

    return wrapper
