"""FastAPI application factory and entry point.

Creates the application instance, registers middleware and exception
handlers, and mounts the workflow routers.

Usage::

    # Development server (from project root)
    uvicorn capstone_portal.api.main:app --reload

    # Production (via Docker / Gunicorn + Uvicorn workers)
    gunicorn capstone_portal.api.main:app -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

import time
import uuid
from typing import Callable, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from capstone_portal import __version__
from capstone_portal.api.metrics import http_request_duration_seconds, http_requests_total
from capstone_portal.api.responses import error_response
from capstone_portal.config.settings import get_settings
from capstone_portal.core.exceptions import TransientConflictError, WorkflowError
from capstone_portal.core.logging_config import configure_logging, request_id_var

# ---------------------------------------------------------------------------
# Logging configuration: applied once at module import time so that log
# records emitted during app construction are captured correctly.
# The log level is re-applied inside create_app() after settings are loaded.
# ---------------------------------------------------------------------------

configure_logging("INFO")

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


async def _workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """Render a workflow error that escaped a service (e.g. from a dependency)."""
    logger.info(
        "workflow_error",
        kind=exc.kind,
        status_code=exc.status_code,
        reason=exc.message,
    )
    return error_response(exc.status_code, exc.message)


async def _transient_conflict_handler(
    request: Request, exc: TransientConflictError
) -> JSONResponse:
    logger.warning("transient_conflict", attempts=exc.attempts)
    return error_response(
        409,
        "The request conflicted with a concurrent update. Please try again.",
    )


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Flatten pydantic validation errors into the error envelope (HTTP 400)."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return error_response(400, "; ".join(messages) or "Invalid request")


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", exc_info=exc)
    return error_response(500, "An unexpected error occurred")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application.

    Separated from the module-level ``app`` singleton so that tests can
    call ``create_app()`` with a patched settings environment before the
    singleton is created.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = get_settings()

    # Re-apply logging configuration with the correct level from settings.
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description=(
            "Workflow engine for capstone project matching: applications, "
            "student partnerships, co-supervision and supervisor capacity."
        ),
        version=__version__,
        debug=settings.debug,
        redirect_slashes=False,
    )

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Log every request with its status and duration, and tag it with an id.

        The ``request_id`` is bound to the structlog context and to the
        ``request_id_var`` ContextVar so stdlib records carry it too, and is
        echoed back as ``X-Request-ID``.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response: Optional[Response] = None
        try:
            response = await call_next(request)
        finally:
            elapsed = time.perf_counter() - start
            status_code = response.status_code if response is not None else 500
            route = request.scope.get("route")
            path = getattr(route, "path", request.url.path)
            http_requests_total.labels(
                method=request.method, path=path, status=str(status_code)
            ).inc()
            http_request_duration_seconds.labels(method=request.method, path=path).observe(
                elapsed
            )
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn(
                "request_complete",
                status_code=status_code,
                elapsed_ms=round(elapsed * 1000, 2),
            )

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- Exception handlers -------------------------------------------------

    application.add_exception_handler(WorkflowError, _workflow_error_handler)
    application.add_exception_handler(TransientConflictError, _transient_conflict_handler)
    application.add_exception_handler(RequestValidationError, _validation_error_handler)
    application.add_exception_handler(Exception, _unexpected_error_handler)

    # ---- Routers -------------------------------------------------------------

    from capstone_portal.api.routes import (  # noqa: PLC0415
        admin_supervisors,
        applications,
        auth,
        health as health_routes,
        projects,
        student_partnerships,
        supervisor_partnerships,
    )

    application.include_router(health_routes.router)
    application.include_router(
        applications.router, prefix="/applications", tags=["applications"]
    )
    application.include_router(
        student_partnerships.router, prefix="/partnerships", tags=["partnerships"]
    )
    application.include_router(
        supervisor_partnerships.router,
        prefix="/supervisor-partnerships",
        tags=["supervisor-partnerships"],
    )
    application.include_router(projects.router, prefix="/projects", tags=["projects"])
    application.include_router(
        admin_supervisors.router, prefix="/admin/supervisors", tags=["admin:supervisors"]
    )
    application.include_router(auth.router, prefix="/auth", tags=["auth"])

    # ---- Lifecycle events -------------------------------------------------

    @application.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            debug=settings.debug,
            log_level=settings.log_level,
        )

    @application.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("application_shutdown")

    # ---- Health & metrics -------------------------------------------------

    @application.get("/health", tags=["system"])
    async def health() -> JSONResponse:
        """Return a minimal process-level liveness status.

        Deep checks (database, Redis) are at ``/api/health``.
        """
        return JSONResponse({"status": "ok"})

    if settings.metrics_enabled:

        @application.get("/metrics", tags=["system"], include_in_schema=False)
        async def metrics() -> Response:
            """Expose Prometheus metrics in the text exposition format."""
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return application


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

app = create_app()
"""The FastAPI application instance.

This is the ASGI callable passed to Uvicorn / Gunicorn.
"""
