"""Project routes.  Mounted at ``/projects`` in ``main.py``."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from capstone_portal.api.dependencies import CurrentCaller, get_project_service
from capstone_portal.api.responses import result_response
from capstone_portal.core.models.enums import Role
from capstone_portal.core.project_service import ProjectService
from capstone_portal.core.schemas.projects import ProjectStatusUpdate

router = APIRouter()


@router.patch("/{project_id}/status", summary="Change a project's status")
async def change_project_status(
    project_id: uuid.UUID,
    body: ProjectStatusUpdate,
    caller: CurrentCaller,
    service: Annotated[ProjectService, Depends(get_project_service)],
) -> JSONResponse:
    """Set the project status; ``completed`` releases any co-supervision."""
    caller.require_role(Role.SUPERVISOR, Role.ADMIN)
    result = await service.change_project_status(project_id, body.status, caller=caller)
    return result_response(result)
