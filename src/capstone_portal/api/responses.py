"""JSON envelope helpers shared by route handlers and exception handlers.

Every API response uses one of two shapes::

    {"success": true, "data": ..., "message": "..."}
    {"success": false, "error": "..."}
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi.responses import JSONResponse

from capstone_portal.core.results import ServiceResult


def result_response(
    result: ServiceResult[Any],
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Render a service result with the HTTP status it carries."""
    return JSONResponse(
        status_code=result.status_code,
        content=result.to_envelope(),
        headers=headers,
    )


def error_response(
    status_code: int,
    error: str,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=headers,
    )
