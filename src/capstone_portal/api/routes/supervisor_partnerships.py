"""Supervisor co-supervision routes.

Mounted at ``/supervisor-partnerships`` in ``main.py``.  Every handler
requires a caller with the ``supervisor`` role.
"""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from capstone_portal.api.dependencies import CurrentCaller, get_supervisor_partnership_service
from capstone_portal.api.responses import result_response
from capstone_portal.core.identity import Caller
from capstone_portal.core.models.enums import Role
from capstone_portal.core.schemas.partnerships import (
    PartnershipResponse,
    RequestListType,
    SupervisorPartnershipRequestCreate,
)
from capstone_portal.core.supervisor_partnership_service import SupervisorPartnershipService

router = APIRouter()

Service = Annotated[SupervisorPartnershipService, Depends(get_supervisor_partnership_service)]


async def require_supervisor(caller: CurrentCaller) -> Caller:
    caller.require_role(Role.SUPERVISOR)
    return caller


SupervisorCaller = Annotated[Caller, Depends(require_supervisor)]


@router.post("/requests", status_code=201, summary="Invite a co-supervisor")
async def send_co_supervision_request(
    body: SupervisorPartnershipRequestCreate,
    caller: SupervisorCaller,
    service: Service,
) -> JSONResponse:
    result = await service.send_request(
        caller.uid,
        body.target_supervisor_id,
        body.project_id,
        body.message,
    )
    return result_response(result)


@router.get("/requests", summary="List pending co-supervision requests")
async def list_co_supervision_requests(
    caller: SupervisorCaller,
    service: Service,
    type: RequestListType = Query(default="all"),
) -> JSONResponse:
    result = await service.get_partnership_requests(caller.uid, type)
    return result_response(result)


@router.post("/requests/{request_id}/respond", summary="Accept or reject an invitation")
async def respond_to_co_supervision_request(
    request_id: uuid.UUID,
    body: PartnershipResponse,
    caller: SupervisorCaller,
    service: Service,
) -> JSONResponse:
    """Accepting takes one unit of the caller's capacity."""
    result = await service.respond_to_request(request_id, caller.uid, body.action)
    return result_response(result)


@router.post("/requests/{request_id}/cancel", summary="Cancel a sent invitation")
async def cancel_co_supervision_request(
    request_id: uuid.UUID,
    caller: SupervisorCaller,
    service: Service,
) -> JSONResponse:
    result = await service.cancel_request(request_id, caller.uid)
    return result_response(result)


@router.post("/projects/{project_id}/unpair", summary="Remove a project's co-supervisor")
async def unpair_co_supervisor(
    project_id: uuid.UUID,
    caller: SupervisorCaller,
    service: Service,
) -> JSONResponse:
    result = await service.unpair_co_supervisor(project_id, caller.uid)
    return result_response(result)


@router.get("/active", summary="List active co-supervisions")
async def active_partnerships(caller: SupervisorCaller, service: Service) -> JSONResponse:
    result = await service.get_active_partnerships(caller.uid)
    return result_response(result)


@router.get("/available", summary="List supervisors with spare capacity")
async def available_partners(caller: SupervisorCaller, service: Service) -> JSONResponse:
    result = await service.get_available_partners(caller.uid)
    return result_response(result)
