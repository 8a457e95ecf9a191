"""Device registry API endpoints."""

from typing import Any

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from harmony.api.errors import service_error
from harmony.core.deps import Codec, CurrentUser, DbSession
from harmony.models import device_metadata
from harmony.models.base import as_utc
from harmony.models.device import Device, DeviceStatus
from harmony.services.device_service import DeviceError, DeviceService, parse_device_type
from harmony.services.qr_codec import QRAction, QRDecryptionError, QRValidationError
from harmony.services.workspace_service import MembershipError

workspace_router = APIRouter()
router = APIRouter()


# ==================== Schemas ====================

class DeviceRegister(BaseModel):
    """Register a device from a QR code (encrypted) or explicit fields."""
    encryptedPayload: str | None = None
    deviceId: str | None = None
    type: str | None = None
    name: str | None = Field(None, max_length=200)
    metadata: dict[str, Any] | None = None


class DeviceCreate(BaseModel):
    """Manually add a device."""
    name: str = Field(..., min_length=1, max_length=200)
    type: str
    serialNumber: str | None = None
    location: str | None = None


class DeviceUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    location: str | None = None


class DeviceTransfer(BaseModel):
    targetWorkspaceId: str


class DeviceControl(BaseModel):
    action: str
    parameters: dict[str, Any] | None = None


class DeviceResponse(BaseModel):
    """Device response."""
    id: str
    deviceId: str | None = None
    name: str
    type: str
    status: str
    workspaceId: str
    metadata: dict
    state: dict
    lastSeen: str | None = None
    createdAt: str


class PaginatedDeviceResponse(BaseModel):
    items: list[DeviceResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# ==================== Helpers ====================

def device_to_response(device: Device) -> DeviceResponse:
    """Convert Device model to response."""
    return DeviceResponse(
        id=device.id,
        deviceId=device.device_id,
        name=device.name,
        type=device.type.value if hasattr(device.type, "value") else device.type,
        status=device.status.value if hasattr(device.status, "value") else device.status,
        workspaceId=device.workspace_id,
        metadata=device.properties or {},
        state=device_metadata.state_summary(device),
        lastSeen=as_utc(device.last_seen).isoformat() if device.last_seen else None,
        createdAt=as_utc(device.created_at).isoformat() if device.created_at else "",
    )


# ==================== Workspace-scoped endpoints ====================

@workspace_router.get("/{workspace_id}/devices", response_model=PaginatedDeviceResponse)
async def list_devices(
    workspace_id: str,
    db: DbSession,
    current_user: CurrentUser,
    device_type: str | None = Query(None, alias="type"),
    device_status: str | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
) -> PaginatedDeviceResponse:
    """List a workspace's devices."""
    service = DeviceService(db)
    try:
        await service.workspaces.require_membership(workspace_id, current_user)
        dtype = parse_device_type(device_type) if device_type else None
    except (MembershipError, DeviceError) as e:
        raise service_error(e)

    try:
        dstatus = DeviceStatus(device_status) if device_status else None
    except ValueError:
        raise service_error(DeviceError(f"Invalid status: {device_status}", code="INVALID_STATUS"))

    devices, total = await service.list_devices(
        workspace_id, device_type=dtype, status=dstatus, page=page, limit=page_size
    )
    return PaginatedDeviceResponse(
        items=[device_to_response(d) for d in devices],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@workspace_router.post(
    "/{workspace_id}/devices/register",
    response_model=DeviceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_device(
    workspace_id: str,
    data: DeviceRegister,
    db: DbSession,
    codec: Codec,
    current_user: CurrentUser,
) -> DeviceResponse:
    """Register a device by hardware id, typically from a REGISTER QR code."""
    hardware_id, device_type, unique_code = data.deviceId, data.type, None
    if data.encryptedPayload:
        try:
            payload = codec.decode(data.encryptedPayload)
        except QRDecryptionError as e:
            raise service_error(DeviceError(str(e), code="DECRYPTION_FAILED"))
        except QRValidationError as e:
            raise service_error(DeviceError(e.reason, code="INVALID_PAYLOAD"))
        if payload.action != QRAction.REGISTER:
            raise service_error(
                DeviceError("This QR code is for scanning, not registration", code="INVALID_ACTION")
            )
        hardware_id, device_type, unique_code = payload.device_id, payload.type, payload.unique_code

    if not hardware_id or not device_type:
        raise service_error(DeviceError("deviceId and type are required", code="MISSING_FIELDS"))

    service = DeviceService(db)
    try:
        device = await service.register_device(
            workspace_id,
            current_user,
            hardware_id=hardware_id,
            device_type=device_type,
            name=data.name,
            metadata=data.metadata,
            unique_code=unique_code,
        )
    except DeviceError as e:
        raise service_error(e)

    return device_to_response(device)


@workspace_router.post(
    "/{workspace_id}/devices",
    response_model=DeviceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_device(
    workspace_id: str,
    data: DeviceCreate,
    db: DbSession,
    current_user: CurrentUser,
) -> DeviceResponse:
    """Manually add a device."""
    service = DeviceService(db)
    try:
        device = await service.add_device(
            workspace_id,
            current_user,
            name=data.name,
            device_type=data.type,
            serial_number=data.serialNumber,
            location=data.location,
        )
    except DeviceError as e:
        raise service_error(e)

    return device_to_response(device)


@workspace_router.post("/{workspace_id}/devices/{device_id}/transfer", response_model=DeviceResponse)
async def transfer_device(
    workspace_id: str,
    device_id: str,
    data: DeviceTransfer,
    db: DbSession,
    current_user: CurrentUser,
) -> DeviceResponse:
    """Transfer a device to another workspace with the same owner."""
    service = DeviceService(db)
    try:
        device = await service.transfer_device(
            workspace_id, device_id, data.targetWorkspaceId, current_user
        )
    except (DeviceError, MembershipError) as e:
        raise service_error(e)

    return device_to_response(device)


# ==================== Device endpoints ====================

@router.get("/{device_id}", response_model=DeviceResponse)
async def get_device(
    device_id: str,
    db: DbSession,
    current_user: CurrentUser,
) -> DeviceResponse:
    """Get a device in one of the caller's workspaces."""
    service = DeviceService(db)
    try:
        device = await service.get_device_details(device_id, current_user)
    except DeviceError as e:
        raise service_error(e)

    return device_to_response(device)


@router.patch("/{device_id}", response_model=DeviceResponse)
async def update_device(
    device_id: str,
    data: DeviceUpdate,
    db: DbSession,
    current_user: CurrentUser,
) -> DeviceResponse:
    """Rename or relocate a device."""
    service = DeviceService(db)
    try:
        device = await service.update_device(
            device_id, current_user, name=data.name, location=data.location
        )
    except DeviceError as e:
        raise service_error(e)

    return device_to_response(device)


@router.delete("/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_device(
    device_id: str,
    db: DbSession,
    current_user: CurrentUser,
) -> None:
    """Remove a device. Its activity history is kept."""
    service = DeviceService(db)
    try:
        await service.remove_device(device_id, current_user)
    except DeviceError as e:
        raise service_error(e)


@router.post("/{device_id}/control", response_model=DeviceResponse)
async def control_device(
    device_id: str,
    data: DeviceControl,
    db: DbSession,
    current_user: CurrentUser,
) -> DeviceResponse:
    """Send a command to a device."""
    service = DeviceService(db)
    try:
        device = await service.control_device(
            device_id, current_user, data.action, data.parameters
        )
    except (DeviceError, MembershipError) as e:
        raise service_error(e)

    return device_to_response(device)

