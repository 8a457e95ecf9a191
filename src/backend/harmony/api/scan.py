"""Scan API endpoints.

Workspace-scoped scans accept either the encrypted QR payload or the legacy
plain fields; the global scan accepts only the encrypted payload and lets the
device decide which workspace earns the points.
"""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from harmony.api.errors import service_error
from harmony.core.deps import Codec, CurrentUser, DbSession
from harmony.services.scan_service import ScanError, ScanService

router = APIRouter()


# ==================== Schemas ====================

class ScanBody(BaseModel):
    """Workspace scan request: encrypted payload or legacy plain fields."""
    encryptedPayload: str | None = None
    deviceId: str | None = None
    action: str | None = None
    type: str | None = None


class GlobalScanBody(BaseModel):
    """Global scan request (encrypted payload only)."""
    encryptedPayload: str | None = Field(None, description="base64(IV || AES-128-CBC ciphertext)")


class ScanActivity(BaseModel):
    id: str
    type: str
    title: str
    timestamp: str


class ScanResponse(BaseModel):
    """Scan success response."""
    pointsEarned: int
    workspacePoints: int
    totalPoints: int
    scanCount: int
    activity: ScanActivity


# ==================== Endpoints ====================

@router.post("/workspaces/{workspace_id}/scan", response_model=ScanResponse)
async def scan_in_workspace(
    workspace_id: str,
    body: ScanBody,
    db: DbSession,
    codec: Codec,
    current_user: CurrentUser,
) -> dict:
    """Scan a device in the given workspace and award points."""
    service = ScanService(db)
    try:
        scan = service.decode(
            current_user,
            codec,
            encrypted_payload=body.encryptedPayload,
            device_id=body.deviceId,
            action=body.action,
            type=body.type,
        )
        result = await service.scan_in_workspace(current_user, workspace_id, scan)
    except ScanError as e:
        raise service_error(e)

    return result.to_response()


@router.post("/scan", response_model=ScanResponse)
async def scan_global(
    body: GlobalScanBody,
    db: DbSession,
    codec: Codec,
    current_user: CurrentUser,
) -> dict:
    """Scan a device without a workspace context."""
    service = ScanService(db)
    try:
        scan = service.decode(current_user, codec, encrypted_payload=body.encryptedPayload)
        result = await service.scan_global(current_user, scan)
    except ScanError as e:
        raise service_error(e)

    return result.to_response()
