"""Admin supervisor capacity routes.

Mounted at ``/admin/supervisors`` in ``main.py``:

- Read a supervisor's capacity
- Override ``max_capacity`` (audited)
- Reconcile ``current_capacity`` against approved applications
"""

from __future__ import annotations

import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from capstone_portal.api.dependencies import get_capacity_service, require_admin
from capstone_portal.api.responses import result_response
from capstone_portal.core.capacity_ledger import CapacityService
from capstone_portal.core.identity import Caller
from capstone_portal.core.schemas.supervisors import CapacityOverride, ReconcileRequest

router = APIRouter()

Admin = Annotated[Caller, Depends(require_admin)]
Capacity = Annotated[CapacityService, Depends(get_capacity_service)]


@router.get("/{supervisor_id}/capacity", summary="Get a supervisor's capacity (admin)")
async def get_capacity(
    supervisor_id: uuid.UUID,
    _admin: Admin,
    service: Capacity,
) -> JSONResponse:
    result = await service.get_capacity(supervisor_id)
    return result_response(result)


@router.patch("/{supervisor_id}/capacity", summary="Override maximum capacity (admin)")
async def override_capacity(
    supervisor_id: uuid.UUID,
    body: CapacityOverride,
    admin: Admin,
    service: Capacity,
) -> JSONResponse:
    """Set ``max_capacity``; it may not drop below the current capacity."""
    result = await service.override_max_capacity(
        supervisor_id,
        body.max_capacity,
        body.reason,
        caller=admin,
    )
    return result_response(result)


@router.post("/reconcile-capacity", summary="Recompute current capacity (admin)")
async def reconcile_capacity(
    admin: Admin,
    service: Capacity,
    body: Optional[ReconcileRequest] = None,
) -> JSONResponse:
    supervisor_id = body.supervisor_id if body is not None else None
    result = await service.reconcile(caller=admin, supervisor_id=supervisor_id)
    return result_response(result)
