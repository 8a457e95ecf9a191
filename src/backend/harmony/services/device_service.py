"""Device registry service.

Owns device identity, the device's single workspace binding and the replay
counter consumed by scan processing.
"""

from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from harmony.models.activity import ActivityType
from harmony.models.base import generate_id, is_object_id, utcnow
from harmony.models.device import Device, DeviceType, DeviceStatus
from harmony.models import device_metadata
from harmony.models.device_metadata import MetadataError
from harmony.models.notification import NotificationType
from harmony.models.user import User
from harmony.models.workspace import MemberPermission, MemberRole, Workspace, WorkspaceMember
from harmony.services.activity_service import ActivityService
from harmony.services.notification_service import NotificationService
from harmony.services.workspace_service import WorkspaceService, MembershipError

logger = structlog.get_logger()


class DeviceError(Exception):
    """Device-related errors."""

    code = "DEVICE_ERROR"
    status_code = 400

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class DeviceNotFoundError(DeviceError):
    code = "DEVICE_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Device not found"):
        super().__init__(message)


class DeviceAlreadyRegisteredError(DeviceError):
    code = "DEVICE_ALREADY_REGISTERED"
    status_code = 409


class DevicePermissionError(DeviceError):
    code = "FORBIDDEN"
    status_code = 403


class DeviceTransferError(DeviceError):
    code = "TRANSFER_FAILED"


CONTROL_ACTIONS = ("toggle", "setBrightness", "setLock")


@dataclass
class RegistrationStatus:
    registered: bool
    workspace_id: str | None = None
    workspace_name: str | None = None


def parse_device_type(value: DeviceType | str) -> DeviceType:
    try:
        return DeviceType(value)
    except ValueError:
        raise DeviceError(
            f"Invalid device type: {value}", code="INVALID_DEVICE_TYPE"
        ) from None


class DeviceService:
    """Service for device registration, lifecycle and control."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.workspaces = WorkspaceService(db)
        self.activities = ActivityService(db)
        self.notifications = NotificationService(db)

    # Lookups

    async def get_device(self, device_id: str) -> Device | None:
        """Get device by internal ID."""
        result = await self.db.execute(select(Device).where(Device.id == device_id))
        return result.scalar_one_or_none()

    async def get_by_hardware_id(self, hardware_id: str) -> Device | None:
        """Get device by the hardware identifier printed in its QR code."""
        result = await self.db.execute(select(Device).where(Device.device_id == hardware_id))
        return result.scalar_one_or_none()

    async def resolve(self, identifier: str, workspace_id: str | None = None) -> Device | None:
        """Find a device by hardware id, falling back to its record id.

        The record id fallback only applies when the identifier has the
        24-hex record id shape.
        """
        query = select(Device).where(Device.device_id == identifier)
        if workspace_id is not None:
            query = query.where(Device.workspace_id == workspace_id)
        device = (await self.db.execute(query)).scalar_one_or_none()
        if device is not None or not is_object_id(identifier):
            return device

        query = select(Device).where(Device.id == identifier)
        if workspace_id is not None:
            query = query.where(Device.workspace_id == workspace_id)
        return (await self.db.execute(query)).scalar_one_or_none()

    async def list_devices(
        self,
        workspace_id: str,
        device_type: DeviceType | None = None,
        status: DeviceStatus | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Device], int]:
        """List a workspace's devices with optional filters."""
        query = select(Device).where(Device.workspace_id == workspace_id)
        if device_type:
            query = query.where(Device.type == device_type)
        if status:
            query = query.where(Device.status == status)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(Device.created_at.desc()).limit(limit).offset((page - 1) * limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_device_details(self, device_id: str, actor: User) -> Device:
        """Fetch a device the caller can see through workspace membership."""
        device = await self._get_or_404(device_id)
        if await self.workspaces.get_membership(device.workspace_id, actor.id) is None:
            raise DevicePermissionError("Access denied")
        return device

    async def registration_status(self, hardware_id: str) -> RegistrationStatus:
        """Whether firmware with this hardware id is bound to a workspace and active."""
        device = await self.get_by_hardware_id(hardware_id)
        if device is None:
            raise DeviceNotFoundError()

        if device.workspace_id and DeviceStatus(device.status) == DeviceStatus.ACTIVE:
            workspace = await self.workspaces.get_workspace(device.workspace_id)
            if workspace is not None:
                return RegistrationStatus(
                    registered=True, workspace_id=workspace.id, workspace_name=workspace.name
                )
        return RegistrationStatus(registered=False)

    # Permission helpers

    async def _require_permission(
        self, workspace_id: str, actor: User, permission: MemberPermission
    ) -> WorkspaceMember:
        membership = await self.workspaces.get_membership(workspace_id, actor.id)
        if membership is None:
            raise DevicePermissionError("Access denied")
        if not membership.has_permission(permission):
            raise DevicePermissionError(
                f"Insufficient permissions. Requires {permission.value} permission."
            )
        return membership

    async def _get_or_404(self, device_id: str) -> Device:
        device = await self.get_device(device_id)
        if device is None:
            raise DeviceNotFoundError()
        return device

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise

    # Registration

    async def register_device(
        self,
        workspace_id: str,
        actor: User,
        hardware_id: str,
        device_type: DeviceType | str,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
        unique_code: int | None = None,
    ) -> Device:
        """Register a device by hardware id (QR registration flow)."""
        hardware_id = (hardware_id or "").strip()
        if not hardware_id:
            raise DeviceError("deviceId and type are required", code="MISSING_FIELDS")
        device_type = parse_device_type(device_type)

        await self._require_permission(workspace_id, actor, MemberPermission.ADD_DEVICE)

        try:
            values = device_metadata.validate_metadata(metadata)
        except MetadataError as e:
            raise DeviceError(str(e), code="INVALID_METADATA") from None

        await self._ensure_unregistered(hardware_id, workspace_id)

        if not name:
            count = (
                await self.db.execute(
                    select(func.count()).select_from(Device).where(
                        Device.workspace_id == workspace_id,
                        Device.type == device_type,
                    )
                )
            ).scalar() or 0
            name = f"{device_type.label} {count + 1}"

        device = Device(
            id=generate_id(),
            device_id=hardware_id,
            name=name,
            type=device_type,
            status=DeviceStatus.ACTIVE,
            workspace_id=workspace_id,
            properties=device_metadata.with_type_defaults(device_type, values),
            last_unique_code=unique_code or 0,
        )
        self.db.add(device)

        self.activities.build(
            workspace_id=workspace_id,
            user_id=actor.id,
            type=ActivityType.DEVICE_ADDED,
            title=f"{device.name} added",
            description=f"New {device_type.label} device registered via QR code",
            device=device,
        )
        self.notifications.record(
            workspace_id,
            NotificationType.DEVICE_ADDED,
            "New Device Registered",
            f"{device.name} has been registered via QR code",
            {"deviceId": device.id, "deviceName": device.name, "addedBy": actor.id},
        )

        try:
            await self._commit()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same hardware id
            raise DeviceAlreadyRegisteredError("Device is already registered") from None

        await self.db.refresh(device)
        logger.info(
            "Device registered",
            device_id=device.id,
            hardware_id=hardware_id,
            workspace_id=workspace_id,
            user_id=actor.id,
        )
        return device

    async def _ensure_unregistered(self, hardware_id: str, workspace_id: str) -> None:
        existing = await self.get_by_hardware_id(hardware_id)
        if existing is None:
            return
        if existing.workspace_id == workspace_id:
            raise DeviceAlreadyRegisteredError("Device is already registered in this workspace")

        owner = await self.workspaces.get_workspace(existing.workspace_id)
        owner_name = owner.name if owner else "another workspace"
        raise DeviceAlreadyRegisteredError(
            f'Device is already registered in workspace: "{owner_name}". '
            "Remove it from that workspace first."
        )

    async def add_device(
        self,
        workspace_id: str,
        actor: User,
        name: str,
        device_type: DeviceType | str,
        serial_number: str | None = None,
        location: str | None = None,
    ) -> Device:
        """Manually add a device that has no hardware id."""
        device_type = parse_device_type(device_type)
        await self._require_permission(workspace_id, actor, MemberPermission.ADD_DEVICE)

        properties: dict[str, Any] = {}
        if serial_number:
            properties["serialNumber"] = serial_number
        if location:
            properties["location"] = location

        device = Device(
            id=generate_id(),
            name=name,
            type=device_type,
            status=DeviceStatus.OFFLINE,
            workspace_id=workspace_id,
            properties=properties,
        )
        self.db.add(device)

        self.notifications.record(
            workspace_id,
            NotificationType.DEVICE_ADDED,
            "New Device Added",
            f"{name} has been added to the workspace",
            {"deviceId": device.id, "deviceName": name, "addedBy": actor.id},
        )
        await self._commit()
        await self.db.refresh(device)

        logger.info("Device added", device_id=device.id, workspace_id=workspace_id)
        return device

    # Lifecycle

    async def update_device(
        self,
        device_id: str,
        actor: User,
        name: str | None = None,
        location: str | None = None,
    ) -> Device:
        """Rename a device or move its location."""
        device = await self._get_or_404(device_id)
        await self._require_permission(device.workspace_id, actor, MemberPermission.UPDATE_DEVICE)

        old_name = device.name
        if name:
            device.name = name
        if location is not None:
            device_metadata.set_location(device, location)

        self.activities.build(
            workspace_id=device.workspace_id,
            user_id=actor.id,
            type=ActivityType.DEVICE_ADDED,
            title=f"{device.name} updated",
            description=(
                f'Device renamed from "{old_name}" to "{device.name}"'
                if name
                else "Device location updated"
            ),
            device=device,
        )
        self.notifications.record(
            device.workspace_id,
            NotificationType.INFO,
            "Device Updated",
            f"{device.name} has been renamed" if name else "Device settings updated",
            {"deviceId": device.id, "updatedBy": actor.id},
        )
        await self._commit()
        await self.db.refresh(device)
        return device

    async def remove_device(self, device_id: str, actor: User) -> None:
        """Hard-delete a device. Its activity history is retained."""
        device = await self._get_or_404(device_id)
        workspace_id = device.workspace_id
        await self._require_permission(workspace_id, actor, MemberPermission.REMOVE_DEVICE)

        device_name = device.name
        self.activities.build(
            workspace_id=workspace_id,
            user_id=actor.id,
            type=ActivityType.DEVICE_REMOVED,
            title=f"{device_name} removed",
            description=f"{device_name} was removed from the workspace",
            device=device,
        )
        self.notifications.record(
            workspace_id,
            NotificationType.DEVICE_REMOVED,
            "Device Removed",
            f"{device_name} has been removed from the workspace",
            {"deviceId": device.id, "deviceName": device_name, "removedBy": actor.id},
        )
        await self.db.delete(device)
        await self._commit()

        logger.info("Device removed", device_id=device_id, workspace_id=workspace_id, user_id=actor.id)

    async def transfer_device(
        self,
        source_workspace_id: str,
        device_id: str,
        target_workspace_id: str,
        actor: User,
    ) -> Device:
        """Move a device between two workspaces with the same owner."""
        if not target_workspace_id:
            raise DeviceTransferError("Target workspace ID is required")

        device = await self._get_or_404(device_id)
        if device.workspace_id != source_workspace_id:
            raise DeviceTransferError("Device does not belong to this workspace")
        if source_workspace_id == target_workspace_id:
            raise DeviceTransferError("Device is already in the target workspace")

        source_membership = await self.workspaces.get_membership(source_workspace_id, actor.id)
        if source_membership is None:
            raise MembershipError("Not a member of source workspace")

        source = await self.workspaces.get_workspace(source_workspace_id)
        target = await self.workspaces.get_workspace(target_workspace_id)
        if target is None:
            raise DeviceTransferError("Target workspace not found")
        if source.owner_id != target.owner_id:
            raise DeviceTransferError(
                "Devices can only be transferred between workspaces with the same owner"
            )

        await self._check_transfer_permission(source, source_membership, target_workspace_id, actor)

        device.workspace_id = target_workspace_id

        self.activities.build(
            workspace_id=source_workspace_id,
            user_id=actor.id,
            type=ActivityType.DEVICE_TRANSFERRED_OUT,
            title="Device Transferred Out",
            description=f"{device.name} transferred to {target.name}",
            device=device,
        )
        self.activities.build(
            workspace_id=target_workspace_id,
            user_id=actor.id,
            type=ActivityType.DEVICE_TRANSFERRED_IN,
            title="Device Transferred In",
            description=f"{device.name} transferred from {source.name}",
            device=device,
        )
        self.notifications.record(
            source_workspace_id,
            NotificationType.DEVICE_TRANSFERRED,
            "Device Transferred Out",
            f"{device.name} has been transferred to {target.name}",
            {"deviceId": device.id, "targetWorkspaceId": target_workspace_id},
        )
        self.notifications.record(
            target_workspace_id,
            NotificationType.DEVICE_RECEIVED,
            "Device Transferred In",
            f"{device.name} has been transferred from {source.name}",
            {"deviceId": device.id, "sourceWorkspaceId": source_workspace_id},
        )
        await self._commit()
        await self.db.refresh(device)

        logger.info(
            "Device transferred",
            device_id=device.id,
            source_workspace_id=source_workspace_id,
            target_workspace_id=target_workspace_id,
            user_id=actor.id,
        )
        return device

    async def _check_transfer_permission(
        self,
        source: Workspace,
        source_membership: WorkspaceMember,
        target_workspace_id: str,
        actor: User,
    ) -> None:
        # The shared owner may always move devices between their workspaces
        if source.owner_id == actor.id:
            return

        if not (
            source_membership.role == MemberRole.ADMIN
            and source_membership.has_permission(MemberPermission.TRANSFER_DEVICE)
        ):
            raise DevicePermissionError(
                "Only owner or admins with TRANSFER_DEVICE permission can transfer devices"
            )

        target_membership = await self.workspaces.get_membership(target_workspace_id, actor.id)
        if target_membership is None:
            raise DevicePermissionError("You must be a member of the target workspace")
        if target_membership.role not in (MemberRole.ADMIN, MemberRole.OWNER):
            raise DevicePermissionError("You must be an admin in the target workspace")
        if not target_membership.has_permission(MemberPermission.TRANSFER_DEVICE):
            raise DevicePermissionError("You need TRANSFER_DEVICE permission in both workspaces")

    # Control

    async def control_device(
        self,
        device_id: str,
        actor: User,
        action: str,
        parameters: dict[str, Any] | None = None,
    ) -> Device:
        """Apply a remote command and mark the device online."""
        device = await self._get_or_404(device_id)
        await self.workspaces.require_membership(device.workspace_id, actor)

        if action not in CONTROL_ACTIONS:
            raise DeviceError("Unknown device action", code="INVALID_ACTION")

        parameters = parameters or {}
        device_type = DeviceType(device.type)
        try:
            if action == "toggle" and device_type == DeviceType.SMART_LAMP:
                device_metadata.toggle_power(device)
            elif action == "setBrightness" and device_type == DeviceType.SMART_LAMP:
                if parameters.get("brightness") is not None:
                    device_metadata.set_brightness(device, parameters["brightness"])
            elif action == "setLock" and device_type == DeviceType.ACCESS_CONTROL:
                if parameters.get("locked") is not None:
                    device_metadata.set_locked(device, parameters["locked"])
        except MetadataError as e:
            raise DeviceError(str(e), code="INVALID_PARAMETERS") from None

        device.status = DeviceStatus.ONLINE
        device.last_seen = utcnow()
        await self._commit()
        await self.db.refresh(device)

        logger.info("Device command applied", device_id=device.id, action=action, user_id=actor.id)
        return device

    # Replay counter

    async def advance_unique_code(self, device_id: str, code: int) -> bool:
        """Raise the device's replay floor to ``code`` if it is strictly higher.

        The comparison and the write are a single conditional UPDATE, so two
        racing scans with the same code cannot both succeed. The caller owns
        the transaction.
        """
        result = await self.db.execute(
            update(Device)
            .where(Device.id == device_id, Device.last_unique_code < code)
            .values(last_unique_code=code)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
