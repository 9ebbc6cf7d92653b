"""Application routes: submission, decisions, resubmission and withdrawal.

Mounted at ``/applications`` in ``main.py``.  Handlers are thin: they pass
the verified caller to :class:`ApplicationWorkflow` and render the
returned :class:`ServiceResult` as the JSON envelope.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from capstone_portal.api.dependencies import CurrentCaller, get_application_workflow
from capstone_portal.api.responses import result_response
from capstone_portal.core.application_workflow import ApplicationWorkflow
from capstone_portal.core.exceptions import ForbiddenError
from capstone_portal.core.schemas.applications import ApplicationCreate, ApplicationStatusUpdate

router = APIRouter()

Workflow = Annotated[ApplicationWorkflow, Depends(get_application_workflow)]


@router.post("", status_code=201, summary="Submit an application")
async def create_application(
    body: ApplicationCreate,
    caller: CurrentCaller,
    workflow: Workflow,
) -> JSONResponse:
    result = await workflow.create_application(body, caller=caller)
    return result_response(result)


@router.get("", summary="List applications visible to the caller")
async def list_applications(
    caller: CurrentCaller,
    workflow: Workflow,
    status: Optional[str] = Query(default=None),
) -> JSONResponse:
    result = await workflow.list_applications(caller=caller, status=status)
    return result_response(result)


@router.get("/check-duplicate", summary="Check for an open application to a supervisor")
async def check_duplicate_application(
    caller: CurrentCaller,
    workflow: Workflow,
    supervisor_id: uuid.UUID = Query(...),
    student_id: Optional[uuid.UUID] = Query(default=None),
) -> JSONResponse:
    """Return ``{"is_duplicate": bool}`` for the caller (or, for admins, any student)."""
    student_id = student_id or caller.uid
    if student_id != caller.uid and not caller.is_admin:
        raise ForbiddenError("You can only check your own applications")
    is_duplicate = await workflow.check_duplicate_application(student_id, supervisor_id)
    return JSONResponse({"success": True, "data": {"is_duplicate": is_duplicate}})


@router.get("/{application_id}", summary="Get one application")
async def get_application(
    application_id: uuid.UUID,
    caller: CurrentCaller,
    workflow: Workflow,
) -> JSONResponse:
    result = await workflow.get_application(application_id, caller=caller)
    return result_response(result)


@router.patch("/{application_id}/status", summary="Approve, reject or review an application")
async def update_application_status(
    application_id: uuid.UUID,
    body: ApplicationStatusUpdate,
    caller: CurrentCaller,
    workflow: Workflow,
) -> JSONResponse:
    """Apply a supervisor or admin decision.

    Approving takes one unit of the supervisor's capacity; a supervisor at
    capacity gets HTTP 400 with the current and maximum capacity in the
    error message.
    """
    result = await workflow.update_status(
        application_id,
        body.status,
        caller=caller,
        feedback=body.feedback,
    )
    return result_response(result)


@router.post("/{application_id}/resubmit", summary="Resubmit after a revision request")
async def resubmit_application(
    application_id: uuid.UUID,
    caller: CurrentCaller,
    workflow: Workflow,
) -> JSONResponse:
    result = await workflow.resubmit_application(application_id, caller=caller)
    return result_response(result)


@router.delete("/{application_id}", summary="Withdraw an application")
async def withdraw_application(
    application_id: uuid.UUID,
    caller: CurrentCaller,
    workflow: Workflow,
) -> JSONResponse:
    result = await workflow.withdraw_application(application_id, caller=caller)
    return result_response(result)
