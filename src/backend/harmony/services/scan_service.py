"""Scan processing: decode, resolve device, replay check, award points, log.

Each scan runs through the same steps whichever way the payload arrived and
stops at the first failure. Nothing is written unless every check passes,
and the replay counter, both point counters and the activity row are
committed in one transaction.
"""

from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from harmony.core.config import settings
from harmony.core.metrics import record_scan
from harmony.models.activity import Activity, ActivityType
from harmony.models.base import as_utc
from harmony.models.device import Device
from harmony.models.user import User
from harmony.models.workspace import WorkspaceMember
from harmony.services.activity_service import ActivityService
from harmony.services.device_service import DeviceService
from harmony.services.qr_codec import (
    QRAction,
    QRCodec,
    QRDecryptionError,
    QRValidationError,
)
from harmony.services.workspace_service import WorkspaceService

logger = structlog.get_logger()

SCAN_ACTIVITY_TITLE = "Waste Scanned"

# Shared by decryption and replay failures so callers cannot tell them apart
GENERIC_REJECTION = "This QR code cannot be accepted. Please try scanning again."


class ScanError(Exception):
    """Base class for scan failures. Each subclass has its own code."""

    code = "SCAN_ERROR"
    status_code = 400
    default_message = "Scan failed"

    def __init__(self, message: str | None = None, data: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            detail["data"] = self.data
        return detail


class MissingPayloadError(ScanError):
    code = "MISSING_PAYLOAD"
    default_message = "Missing QR payload. Scan an encrypted device QR code."


class DecryptionFailedError(ScanError):
    code = "DECRYPTION_FAILED"
    default_message = GENERIC_REJECTION


class InvalidPayloadError(ScanError):
    code = "INVALID_PAYLOAD"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid QR payload: {reason}")


class InvalidActionError(ScanError):
    code = "INVALID_ACTION"

    def __init__(self, action: str | None):
        self.action = action
        super().__init__(
            "This QR code is for device registration. Please use the Add Device feature.",
            data={"action": action},
        )


class DeviceNotFoundError(ScanError):
    code = "DEVICE_NOT_FOUND"
    status_code = 404
    default_message = "This device is not registered"


class WorkspaceMismatchError(ScanError):
    code = "WORKSPACE_MISMATCH"
    status_code = 403
    default_message = "This device belongs to a different workspace"


class NotAMemberError(ScanError):
    code = "NOT_A_MEMBER"
    status_code = 403
    default_message = "You must be a member of this workspace to scan devices"


class ReplayDetectedError(ScanError):
    code = "REPLAY_DETECTED"
    default_message = GENERIC_REJECTION


class ScanPersistenceError(ScanError):
    code = "SCAN_FAILED"
    status_code = 500
    default_message = "Failed to process scan"


# Logged at warning with full detail; the caller only sees the generic message
SECURITY_CODES = {
    DecryptionFailedError.code,
    ReplayDetectedError.code,
    WorkspaceMismatchError.code,
}


@dataclass(frozen=True)
class NormalizedScan:
    """Scan input after decoding, whichever path it came through."""

    device_id: str
    action: str
    type: str | None = None
    unique_code: int | None = None
    encrypted: bool = False

    @property
    def device_type(self) -> str | None:
        """Device type reported by the QR code, if any."""
        if self.type and self.type.strip():
            return self.type.strip()[:50]
        return None


class ScanRequest:
    """Constructors converging encrypted and legacy plain scans."""

    @staticmethod
    def from_encrypted(blob: str | None, codec: QRCodec) -> NormalizedScan:
        if not blob:
            raise MissingPayloadError()
        try:
            payload = codec.decode(blob)
        except QRDecryptionError:
            raise DecryptionFailedError() from None
        except QRValidationError as e:
            raise InvalidPayloadError(e.reason) from None
        return NormalizedScan(
            device_id=payload.device_id,
            action=payload.action.value,
            type=payload.type,
            unique_code=payload.unique_code,
            encrypted=True,
        )

    @staticmethod
    def from_plain(
        device_id: str | None, action: str | None, type: str | None = None
    ) -> NormalizedScan:
        if not device_id or not str(device_id).strip():
            raise MissingPayloadError()
        if not action:
            raise InvalidPayloadError("Missing field: action")
        return NormalizedScan(device_id=str(device_id).strip(), action=str(action), type=type)

    @classmethod
    def from_body(
        cls,
        codec: QRCodec,
        encrypted_payload: str | None = None,
        device_id: str | None = None,
        action: str | None = None,
        type: str | None = None,
    ) -> NormalizedScan:
        """Pick the encrypted path when a payload is present, else the legacy one."""
        if encrypted_payload:
            return cls.from_encrypted(encrypted_payload, codec)
        if device_id:
            return cls.from_plain(device_id, action, type)
        raise MissingPayloadError()


@dataclass
class ScanResult:
    points_earned: int
    workspace_points: int
    total_points: int
    scan_count: int
    activity: Activity

    def to_response(self) -> dict[str, Any]:
        return {
            "pointsEarned": self.points_earned,
            "workspacePoints": self.workspace_points,
            "totalPoints": self.total_points,
            "scanCount": self.scan_count,
            "activity": {
                "id": self.activity.id,
                "type": ActivityType(self.activity.type).value,
                "title": self.activity.title,
                "timestamp": as_utc(self.activity.created_at).isoformat(),
            },
        }


class ScanService:
    """Processes device QR scans into point awards."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.devices = DeviceService(db)
        self.workspaces = WorkspaceService(db)
        self.activities = ActivityService(db)

    def decode(
        self,
        user: User,
        codec: QRCodec,
        encrypted_payload: str | None = None,
        device_id: str | None = None,
        action: str | None = None,
        type: str | None = None,
    ) -> NormalizedScan:
        """Normalize a request body, counting and logging decode failures."""
        try:
            return ScanRequest.from_body(codec, encrypted_payload, device_id, action, type)
        except ScanError as e:
            self._log_rejection(e, user.id, None, None)
            raise

    async def scan_in_workspace(
        self, user: User, workspace_id: str, scan: NormalizedScan
    ) -> ScanResult:
        """Scan a device that must belong to the caller's chosen workspace."""
        user_id = user.id
        try:
            self._check_action(scan)

            membership = await self.workspaces.get_membership(workspace_id, user.id)
            if membership is None:
                raise NotAMemberError()

            device = await self.devices.resolve(scan.device_id, workspace_id)
            if device is None:
                await self._raise_not_in_workspace(user, scan.device_id)

            result = await self._award(user, membership, device, scan)
        except ScanError as e:
            self._log_rejection(e, user_id, scan, workspace_id)
            raise

        record_scan("success")
        return result

    async def scan_global(self, user: User, scan: NormalizedScan) -> ScanResult:
        """Scan with no workspace context; the device decides the workspace."""
        user_id = user.id
        try:
            if not scan.encrypted:
                raise MissingPayloadError()
            self._check_action(scan)

            device = await self.devices.resolve(scan.device_id)
            if device is None:
                raise DeviceNotFoundError()

            membership = await self.workspaces.get_membership(device.workspace_id, user.id)
            if membership is None:
                workspace = await self.workspaces.get_workspace(device.workspace_id)
                name = workspace.name if workspace else "Unknown"
                raise NotAMemberError(
                    f'This device belongs to workspace "{name}", but you are not a member.',
                    data={"workspaceId": device.workspace_id, "workspaceName": name},
                )

            result = await self._award(user, membership, device, scan)
        except ScanError as e:
            self._log_rejection(e, user_id, scan, None)
            raise

        record_scan("success")
        return result

    def _check_action(self, scan: NormalizedScan) -> None:
        if scan.action != QRAction.SCAN.value:
            raise InvalidActionError(scan.action)

    async def _raise_not_in_workspace(self, user: User, identifier: str) -> None:
        elsewhere = await self.devices.resolve(identifier)
        if elsewhere is None:
            raise DeviceNotFoundError()

        target = await self.workspaces.get_workspace(elsewhere.workspace_id)
        is_member = await self.workspaces.get_membership(elsewhere.workspace_id, user.id)
        raise WorkspaceMismatchError(
            data={
                "targetWorkspaceId": elsewhere.workspace_id,
                "targetWorkspaceName": target.name if target else "Unknown Workspace",
                "isMember": is_member is not None,
            }
        )

    async def _award(
        self,
        user: User,
        membership: WorkspaceMember,
        device: Device,
        scan: NormalizedScan,
    ) -> ScanResult:
        """Replay check then award, all in one transaction."""
        reward = settings.scan_reward_points
        # Rollback expires ORM state; keep plain ids for logging
        device_id, user_id, workspace_id = device.id, user.id, device.workspace_id

        try:
            if scan.unique_code is not None:
                accepted = await self.devices.advance_unique_code(device_id, scan.unique_code)
                if not accepted:
                    raise ReplayDetectedError()

            member_row = (
                await self.db.execute(
                    update(WorkspaceMember)
                    .where(WorkspaceMember.id == membership.id)
                    .values(
                        points=WorkspaceMember.points + reward,
                        scan_count=WorkspaceMember.scan_count + 1,
                    )
                    .returning(WorkspaceMember.points, WorkspaceMember.scan_count)
                    .execution_options(synchronize_session=False)
                )
            ).one()
            user_row = (
                await self.db.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(points=User.points + reward, scan_count=User.scan_count + 1)
                    .returning(User.points)
                    .execution_options(synchronize_session=False)
                )
            ).one()

            activity = self.activities.build(
                workspace_id=workspace_id,
                user_id=user_id,
                type=ActivityType.SCAN,
                title=SCAN_ACTIVITY_TITLE,
                description=f"{device.name} • {device.type_label}",
                points=reward,
                device=device,
                device_type=scan.device_type,
            )
            await self.db.commit()
        except ScanError:
            raise
        except Exception:
            await self.db.rollback()
            logger.exception(
                "Scan award failed", device_id=device_id, user_id=user_id, workspace_id=workspace_id
            )
            record_scan("error")
            raise ScanPersistenceError() from None

        logger.info(
            "Scan accepted",
            device_id=device_id,
            user_id=user_id,
            workspace_id=workspace_id,
            unique_code=scan.unique_code,
            workspace_points=member_row.points,
        )
        return ScanResult(
            points_earned=reward,
            workspace_points=member_row.points,
            total_points=user_row.points,
            scan_count=member_row.scan_count,
            activity=activity,
        )

    def _log_rejection(
        self,
        error: ScanError,
        user_id: str,
        scan: NormalizedScan | None,
        workspace_id: str | None,
    ) -> None:
        if isinstance(error, ScanPersistenceError):
            return
        record_scan(error.code.lower())
        log = logger.warning if error.code in SECURITY_CODES else logger.info
        log(
            "Scan rejected",
            code=error.code,
            device_id=scan.device_id if scan else None,
            unique_code=scan.unique_code if scan else None,
            user_id=user_id,
            workspace_id=workspace_id,
        )
