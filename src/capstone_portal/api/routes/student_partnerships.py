"""Student partnership routes.

Mounted at ``/partnerships`` in ``main.py``.  Every handler requires a
caller with the ``student`` role and acts on the caller's own requests.
"""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from capstone_portal.api.dependencies import CurrentCaller, get_student_partnership_service
from capstone_portal.api.responses import result_response
from capstone_portal.core.identity import Caller
from capstone_portal.core.models.enums import Role
from capstone_portal.core.schemas.partnerships import (
    PartnershipResponse,
    RequestListType,
    StudentPartnershipRequestCreate,
    UnpairRequest,
)
from capstone_portal.core.student_partnership_service import StudentPartnershipService

router = APIRouter()

Service = Annotated[StudentPartnershipService, Depends(get_student_partnership_service)]


async def require_student(caller: CurrentCaller) -> Caller:
    caller.require_role(Role.STUDENT)
    return caller


StudentCaller = Annotated[Caller, Depends(require_student)]


@router.post("/requests", status_code=201, summary="Send a partnership request")
async def send_partnership_request(
    body: StudentPartnershipRequestCreate,
    caller: StudentCaller,
    service: Service,
) -> JSONResponse:
    result = await service.send_request(caller.uid, body.target_student_id)
    return result_response(result)


@router.get("/requests", summary="List pending partnership requests")
async def list_partnership_requests(
    caller: StudentCaller,
    service: Service,
    type: RequestListType = Query(default="all"),
) -> JSONResponse:
    result = await service.get_partnership_requests(caller.uid, type)
    return result_response(result)


@router.post("/requests/{request_id}/respond", summary="Accept or reject a request")
async def respond_to_partnership_request(
    request_id: uuid.UUID,
    body: PartnershipResponse,
    caller: StudentCaller,
    service: Service,
) -> JSONResponse:
    result = await service.respond_to_request(request_id, caller.uid, body.action)
    return result_response(result)


@router.post("/requests/{request_id}/cancel", summary="Cancel a sent request")
async def cancel_partnership_request(
    request_id: uuid.UUID,
    caller: StudentCaller,
    service: Service,
) -> JSONResponse:
    result = await service.cancel_request(request_id, caller.uid)
    return result_response(result)


@router.post("/unpair", summary="Dissolve the caller's partnership")
async def unpair(
    body: UnpairRequest,
    caller: StudentCaller,
    service: Service,
) -> JSONResponse:
    result = await service.unpair_students(caller.uid, body.partner_id)
    return result_response(result)


@router.get("/available", summary="List students available for pairing")
async def available_students(caller: StudentCaller, service: Service) -> JSONResponse:
    result = await service.get_available_students(caller.uid)
    return result_response(result)
