"""Endpoints called by device firmware rather than by users."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from harmony.api.errors import service_error
from harmony.core.deps import DbSession, require_device_api_key
from harmony.services.device_service import DeviceError, DeviceService

router = APIRouter()


class RegistrationStatusResponse(BaseModel):
    registered: bool
    workspaceId: str | None = None
    workspaceName: str | None = None
    message: str | None = None


@router.get("/status", response_model=RegistrationStatusResponse, response_model_exclude_none=True)
async def check_status(
    db: DbSession,
    _: Annotated[str, Depends(require_device_api_key)],
    device_id: str = Query(..., alias="deviceId", min_length=1),
) -> RegistrationStatusResponse:
    """Let a device learn whether it has been claimed by a workspace."""
    try:
        result = await DeviceService(db).registration_status(device_id)
    except DeviceError as e:
        raise service_error(e)

    if result.registered:
        return RegistrationStatusResponse(
            registered=True,
            workspaceId=result.workspace_id,
            workspaceName=result.workspace_name,
        )
    return RegistrationStatusResponse(
        registered=False,
        message="Device exists but is not active or assigned to a workspace",
    )
