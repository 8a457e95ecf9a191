"""Tests for device service."""

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import add_member, auth_headers
from harmony.models.activity import Activity, ActivityType
from harmony.models.device import Device, DeviceStatus, DeviceType
from harmony.models.notification import Notification, NotificationType
from harmony.models.user import User
from harmony.models.workspace import MemberPermission, MemberRole, Workspace, WorkspaceType
from harmony.models.device_metadata import state_summary
from harmony.services.device_service import (
    DeviceAlreadyRegisteredError,
    DeviceError,
    DeviceNotFoundError,
    DevicePermissionError,
    DeviceService,
    DeviceTransferError,
)
from harmony.services.workspace_service import MembershipError


class TestDeviceRegistration:
    """QR registration flow."""

    @pytest.mark.asyncio
    async def test_register_device(self, db_session: AsyncSession, workspace: Workspace, owner: User):
        """Registration auto-names, applies defaults and records history."""
        service = DeviceService(db_session)

        device = await service.register_device(workspace.id, owner, "BIN-100", "SMART_BIN")

        assert device.name == "Smart Bin 1"
        assert device.type == DeviceType.SMART_BIN
        assert device.status == DeviceStatus.ACTIVE
        assert device.properties == {"capacity": 1000}
        assert device.workspace_id == workspace.id

        activity = (await db_session.execute(select(Activity))).scalar_one()
        assert activity.type == ActivityType.DEVICE_ADDED
        assert activity.title == "Smart Bin 1 added"
        assert activity.description == "New Smart Bin device registered via QR code"

        notification = (await db_session.execute(select(Notification))).scalar_one()
        assert notification.type == NotificationType.DEVICE_ADDED
        assert notification.title == "New Device Registered"

    @pytest.mark.asyncio
    async def test_auto_name_counts_same_type(
        self, db_session: AsyncSession, workspace: Workspace, owner: User,
    ):
        service = DeviceService(db_session)
        await service.register_device(workspace.id, owner, "BIN-100", "SMART_BIN")
        await service.register_device(workspace.id, owner, "LAMP-100", "SMART_LAMP")

        second_bin = await service.register_device(workspace.id, owner, "BIN-101", "SMART_BIN")

        assert second_bin.name == "Smart Bin 2"

    @pytest.mark.asyncio
    async def test_explicit_name_and_metadata(
        self, db_session: AsyncSession, workspace: Workspace, owner: User,
    ):
        service = DeviceService(db_session)

        device = await service.register_device(
            workspace.id, owner, "LAMP-7", DeviceType.SMART_LAMP,
            name="Desk Lamp", metadata={"wattage": 40, "room": "B12"},
        )

        assert device.name == "Desk Lamp"
        assert device.properties == {"wattage": 40, "room": "B12", "colorTemp": 3000}

    @pytest.mark.asyncio
    async def test_seeds_replay_counter(self, db_session: AsyncSession, workspace: Workspace, owner: User):
        device = await DeviceService(db_session).register_device(
            workspace.id, owner, "BIN-100", "SMART_BIN", unique_code=7
        )

        assert device.last_unique_code == 7

    @pytest.mark.asyncio
    async def test_duplicate_in_same_workspace(
        self, db_session: AsyncSession, workspace: Workspace, owner: User, device: Device,
    ):
        with pytest.raises(DeviceAlreadyRegisteredError) as exc_info:
            await DeviceService(db_session).register_device(workspace.id, owner, "BIN-001", "SMART_BIN")

        assert exc_info.value.message == "Device is already registered in this workspace"
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_duplicate_in_other_workspace(
        self, db_session: AsyncSession, other_workspace: Workspace, owner: User, device: Device,
    ):
        """A hardware id is bound to one workspace at a time."""
        with pytest.raises(DeviceAlreadyRegisteredError) as exc_info:
            await DeviceService(db_session).register_device(
                other_workspace.id, owner, "BIN-001", "SMART_BIN"
            )

        assert '"Green Campus"' in exc_info.value.message

    @pytest.mark.asyncio
    async def test_reregister_after_removal(
        self, db_session: AsyncSession, workspace: Workspace, other_workspace: Workspace,
        owner: User, device: Device,
    ):
        service = DeviceService(db_session)
        await service.remove_device(device.id, owner)

        moved = await service.register_device(other_workspace.id, owner, "BIN-001", "SMART_BIN")

        assert moved.workspace_id == other_workspace.id

    @pytest.mark.asyncio
    async def test_regular_member_cannot_register(
        self, db_session: AsyncSession, workspace: Workspace, member: User,
    ):
        with pytest.raises(DevicePermissionError) as exc_info:
            await DeviceService(db_session).register_device(workspace.id, member, "BIN-100", "SMART_BIN")

        assert exc_info.value.message == "Insufficient permissions. Requires ADD_DEVICE permission."

    @pytest.mark.asyncio
    async def test_admin_with_permission_can_register(
        self, db_session: AsyncSession, workspace: Workspace, outsider: User,
    ):
        await add_member(
            db_session, workspace, outsider, role=MemberRole.ADMIN,
            permissions=[MemberPermission.ADD_DEVICE],
        )

        device = await DeviceService(db_session).register_device(
            workspace.id, outsider, "BIN-100", "SMART_BIN"
        )

        assert device.device_id == "BIN-100"

    @pytest.mark.asyncio
    async def test_non_member_denied(self, db_session: AsyncSession, workspace: Workspace, outsider: User):
        with pytest.raises(DevicePermissionError, match="Access denied"):
            await DeviceService(db_session).register_device(workspace.id, outsider, "BIN-100", "SMART_BIN")

    @pytest.mark.asyncio
    async def test_invalid_type(self, db_session: AsyncSession, workspace: Workspace, owner: User):
        with pytest.raises(DeviceError) as exc_info:
            await DeviceService(db_session).register_device(workspace.id, owner, "X-1", "TOASTER")

        assert exc_info.value.code == "INVALID_DEVICE_TYPE"

    @pytest.mark.asyncio
    async def test_nested_metadata_rejected(
        self, db_session: AsyncSession, workspace: Workspace, owner: User,
    ):
        with pytest.raises(DeviceError) as exc_info:
            await DeviceService(db_session).register_device(
                workspace.id, owner, "BIN-100", "SMART_BIN", metadata={"nested": {"a": 1}}
            )

        assert exc_info.value.code == "INVALID_METADATA"


class TestDeviceLifecycle:
    """Manual add, update, remove and listing."""

    @pytest.mark.asyncio
    async def test_add_device(self, db_session: AsyncSession, workspace: Workspace, owner: User):
        device = await DeviceService(db_session).add_device(
            workspace.id, owner, "Gate", "ACCESS_CONTROL", serial_number="SN-1", location="North"
        )

        assert device.device_id is None
        assert device.status == DeviceStatus.OFFLINE
        assert device.properties == {"serialNumber": "SN-1", "location": "North"}

    @pytest.mark.asyncio
    async def test_update_device(
        self, db_session: AsyncSession, owner: User, device: Device,
    ):
        updated = await DeviceService(db_session).update_device(
            device.id, owner, name="Atrium Bin", location="Atrium"
        )

        assert updated.name == "Atrium Bin"
        assert updated.properties["location"] == "Atrium"

    @pytest.mark.asyncio
    async def test_remove_keeps_history(
        self, db_session: AsyncSession, workspace: Workspace, owner: User, device: Device,
    ):
        await DeviceService(db_session).remove_device(device.id, owner)

        remaining = (await db_session.execute(select(Device))).scalars().all()
        activity = (await db_session.execute(select(Activity))).scalar_one()
        assert remaining == []
        assert activity.type == ActivityType.DEVICE_REMOVED
        assert activity.device_ref_id == device.id

    @pytest.mark.asyncio
    async def test_member_cannot_remove(self, db_session: AsyncSession, member: User, device: Device):
        with pytest.raises(DevicePermissionError):
            await DeviceService(db_session).remove_device(device.id, member)

    @pytest.mark.asyncio
    async def test_list_devices_filters(
        self, db_session: AsyncSession, workspace: Workspace, owner: User, device: Device,
    ):
        service = DeviceService(db_session)
        await service.register_device(workspace.id, owner, "LAMP-1", "SMART_LAMP")

        everything, total = await service.list_devices(workspace.id)
        lamps, lamp_total = await service.list_devices(workspace.id, device_type=DeviceType.SMART_LAMP)

        assert total == 2
        assert len(everything) == 2
        assert lamp_total == 1
        assert lamps[0].device_id == "LAMP-1"

    @pytest.mark.asyncio
    async def test_resolve_by_hardware_or_record_id(
        self, db_session: AsyncSession, workspace: Workspace, other_workspace: Workspace,
        device: Device,
    ):
        service = DeviceService(db_session)

        assert (await service.resolve("BIN-001")).id == device.id
        assert (await service.resolve(device.id)).id == device.id
        assert await service.resolve("BIN-001", other_workspace.id) is None
        assert await service.resolve("not-a-record-id") is None


class TestReplayCounter:

    @pytest.mark.asyncio
    async def test_only_strictly_higher_codes_advance(self, db_session: AsyncSession, device: Device):
        service = DeviceService(db_session)

        assert await service.advance_unique_code(device.id, 3) is True
        assert await service.advance_unique_code(device.id, 3) is False
        assert await service.advance_unique_code(device.id, 2) is False
        assert await service.advance_unique_code(device.id, 10) is True
        await db_session.commit()

        await db_session.refresh(device)
        assert device.last_unique_code == 10


class TestDeviceTransfer:
    """Moving devices between sibling workspaces."""

    @pytest.mark.asyncio
    async def test_owner_transfers(
        self, db_session: AsyncSession, workspace: Workspace, other_workspace: Workspace,
        owner: User, device: Device,
    ):
        moved = await DeviceService(db_session).transfer_device(
            workspace.id, device.id, other_workspace.id, owner
        )

        assert moved.workspace_id == other_workspace.id
        activities = (await db_session.execute(select(Activity))).scalars().all()
        assert {(a.workspace_id, a.type) for a in activities} == {
            (workspace.id, ActivityType.DEVICE_TRANSFERRED_OUT),
            (other_workspace.id, ActivityType.DEVICE_TRANSFERRED_IN),
        }
        notifications = (await db_session.execute(select(Notification))).scalars().all()
        assert {n.type for n in notifications} == {
            NotificationType.DEVICE_TRANSFERRED,
            NotificationType.DEVICE_RECEIVED,
        }

    @pytest.mark.asyncio
    async def test_different_owners_rejected(
        self, db_session: AsyncSession, workspace: Workspace, owner: User, outsider: User,
        device: Device,
    ):
        foreign = Workspace(name="Elsewhere", type=WorkspaceType.PRIVATE, owner_id=outsider.id)
        db_session.add(foreign)
        await db_session.commit()

        with pytest.raises(DeviceTransferError, match="same owner"):
            await DeviceService(db_session).transfer_device(workspace.id, device.id, foreign.id, owner)

    @pytest.mark.asyncio
    async def test_regular_member_rejected(
        self, db_session: AsyncSession, workspace: Workspace, other_workspace: Workspace,
        member: User, device: Device,
    ):
        with pytest.raises(DevicePermissionError):
            await DeviceService(db_session).transfer_device(
                workspace.id, device.id, other_workspace.id, member
            )

    @pytest.mark.asyncio
    async def test_admin_needs_permission_in_both(
        self, db_session: AsyncSession, workspace: Workspace, other_workspace: Workspace,
        outsider: User, device: Device,
    ):
        await add_member(
            db_session, workspace, outsider, role=MemberRole.ADMIN,
            permissions=[MemberPermission.TRANSFER_DEVICE],
        )
        target_membership = await add_member(
            db_session, other_workspace, outsider, role=MemberRole.ADMIN, permissions=[],
        )
        service = DeviceService(db_session)

        with pytest.raises(DevicePermissionError, match="both workspaces"):
            await service.transfer_device(workspace.id, device.id, other_workspace.id, outsider)

        target_membership.permissions = [MemberPermission.TRANSFER_DEVICE.value]
        await db_session.commit()

        moved = await service.transfer_device(workspace.id, device.id, other_workspace.id, outsider)
        assert moved.workspace_id == other_workspace.id

    @pytest.mark.asyncio
    async def test_non_member_of_source(
        self, db_session: AsyncSession, workspace: Workspace, other_workspace: Workspace,
        outsider: User, device: Device,
    ):
        with pytest.raises(MembershipError, match="source workspace"):
            await DeviceService(db_session).transfer_device(
                workspace.id, device.id, other_workspace.id, outsider
            )

    @pytest.mark.asyncio
    async def test_wrong_source(
        self, db_session: AsyncSession, other_workspace: Workspace, workspace: Workspace,
        owner: User, device: Device,
    ):
        with pytest.raises(DeviceTransferError, match="does not belong"):
            await DeviceService(db_session).transfer_device(
                other_workspace.id, device.id, workspace.id, owner
            )


class TestDeviceControl:
    """Remote commands."""

    @pytest.fixture
    async def lamp(self, db_session: AsyncSession, workspace: Workspace, owner: User) -> Device:
        return await DeviceService(db_session).register_device(workspace.id, owner, "LAMP-1", "SMART_LAMP")

    @pytest.mark.asyncio
    async def test_toggle_lamp(self, db_session: AsyncSession, member: User, lamp: Device):
        service = DeviceService(db_session)

        first = await service.control_device(lamp.id, member, "toggle")
        assert first.properties["isOn"] is True
        assert first.status == DeviceStatus.ONLINE

        second = await service.control_device(lamp.id, member, "toggle")
        assert second.properties["isOn"] is False

    @pytest.mark.asyncio
    async def test_brightness_bounds(self, db_session: AsyncSession, member: User, lamp: Device):
        service = DeviceService(db_session)

        updated = await service.control_device(lamp.id, member, "setBrightness", {"brightness": 55})
        assert updated.properties["brightness"] == 55

        with pytest.raises(DeviceError) as exc_info:
            await service.control_device(lamp.id, member, "setBrightness", {"brightness": 150})
        assert exc_info.value.code == "INVALID_PARAMETERS"

    @pytest.mark.asyncio
    async def test_unknown_action(self, db_session: AsyncSession, member: User, lamp: Device):
        with pytest.raises(DeviceError) as exc_info:
            await DeviceService(db_session).control_device(lamp.id, member, "selfDestruct")

        assert exc_info.value.code == "INVALID_ACTION"

    @pytest.mark.asyncio
    async def test_action_for_other_type_only_marks_online(
        self, db_session: AsyncSession, member: User, device: Device,
    ):
        updated = await DeviceService(db_session).control_device(
            device.id, member, "setLock", {"locked": False}
        )

        assert "isLocked" not in updated.properties
        assert updated.status == DeviceStatus.ONLINE

    @pytest.mark.asyncio
    async def test_non_member(self, db_session: AsyncSession, outsider: User, device: Device):
        with pytest.raises(MembershipError):
            await DeviceService(db_session).control_device(device.id, outsider, "toggle")


class TestDeviceDetails:
    """Detail lookups and the firmware status check."""

    def test_state_summary_by_type(self):
        bin_device = Device(
            type=DeviceType.SMART_BIN,
            properties={"capacity": 1000, "fillLevel": 42, "location": "Lobby"},
        )
        lamp = Device(type=DeviceType.SMART_LAMP, properties={"isOn": True, "brightness": "55"})
        lock = Device(type=DeviceType.ACCESS_CONTROL, properties={})

        assert state_summary(bin_device) == {"location": "Lobby", "fillLevel": 42.0}
        assert state_summary(lamp) == {"location": None, "isOn": True, "brightness": 55}
        assert state_summary(lock) == {"location": None, "isLocked": True}

    @pytest.mark.asyncio
    async def test_member_sees_device(self, db_session: AsyncSession, member: User, device: Device):
        found = await DeviceService(db_session).get_device_details(device.id, member)

        assert found.id == device.id

    @pytest.mark.asyncio
    async def test_outsider_denied(self, db_session: AsyncSession, outsider: User, device: Device):
        with pytest.raises(DevicePermissionError):
            await DeviceService(db_session).get_device_details(device.id, outsider)

    @pytest.mark.asyncio
    async def test_missing_device(self, db_session: AsyncSession, member: User):
        with pytest.raises(DeviceNotFoundError):
            await DeviceService(db_session).get_device_details("0123456789abcdef01234567", member)

    @pytest.mark.asyncio
    async def test_registration_status(
        self, db_session: AsyncSession, workspace: Workspace, device: Device,
    ):
        service = DeviceService(db_session)

        status = await service.registration_status("BIN-001")
        assert status.registered is True
        assert status.workspace_id == workspace.id
        assert status.workspace_name == "Green Campus"

        device.status = DeviceStatus.INACTIVE
        await db_session.commit()
        assert (await service.registration_status("BIN-001")).registered is False

        with pytest.raises(DeviceNotFoundError):
            await service.registration_status("BIN-404")


class TestDeviceAPI:
    """Device endpoints."""

    @pytest.mark.asyncio
    async def test_register_from_qr(self, client, codec, workspace: Workspace, owner: User):
        blob = codec.encrypt(
            {"deviceId": "BIN-900", "type": "SMART_BIN", "action": "REGISTER", "uniqueCode": 12}
        )

        response = await client.post(
            f"/api/v1/workspaces/{workspace.id}/devices/register",
            json={"encryptedPayload": blob},
            headers=auth_headers(owner),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["deviceId"] == "BIN-900"
        assert data["name"] == "Smart Bin 1"
        assert data["type"] == "SMART_BIN"

    @pytest.mark.asyncio
    async def test_register_rejects_scan_code(self, client, codec, workspace: Workspace, owner: User):
        blob = codec.encrypt(
            {"deviceId": "BIN-900", "type": "SMART_BIN", "action": "SCAN", "uniqueCode": 12}
        )

        response = await client.post(
            f"/api/v1/workspaces/{workspace.id}/devices/register",
            json={"encryptedPayload": blob},
            headers=auth_headers(owner),
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_ACTION"

    @pytest.mark.asyncio
    async def test_register_conflict(self, client, workspace: Workspace, owner: User, device: Device):
        response = await client.post(
            f"/api/v1/workspaces/{workspace.id}/devices/register",
            json={"deviceId": "BIN-001", "type": "SMART_BIN"},
            headers=auth_headers(owner),
        )

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "DEVICE_ALREADY_REGISTERED"

    @pytest.mark.asyncio
    async def test_list(self, client, workspace: Workspace, member: User, device: Device):
        response = await client.get(
            f"/api/v1/workspaces/{workspace.id}/devices", headers=auth_headers(member)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["deviceId"] == "BIN-001"

    @pytest.mark.asyncio
    async def test_delete(self, client, owner: User, device: Device):
        response = await client.delete(f"/api/v1/devices/{device.id}", headers=auth_headers(owner))

        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_delete_missing(self, client, owner: User):
        response = await client.delete("/api/v1/devices/0123456789abcdef01234567", headers=auth_headers(owner))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_get_device(self, client, member: User, device: Device):
        response = await client.get(f"/api/v1/devices/{device.id}", headers=auth_headers(member))

        assert response.status_code == 200
        data = response.json()
        assert data["deviceId"] == "BIN-001"
        assert data["state"] == {"location": None, "fillLevel": None}

    @pytest.mark.asyncio
    async def test_get_device_outsider(self, client, outsider: User, device: Device):
        response = await client.get(f"/api/v1/devices/{device.id}", headers=auth_headers(outsider))

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_get_device_missing(self, client, member: User):
        response = await client.get(
            "/api/v1/devices/0123456789abcdef01234567", headers=auth_headers(member)
        )

        assert response.status_code == 404


class TestIoTStatusAPI:
    """Firmware registration check."""

    url = "/api/v1/iot/status"
    headers = {"X-API-Key": "firmware-test-key"}

    @pytest.mark.asyncio
    async def test_registered(self, client, workspace: Workspace, device: Device):
        response = await client.get(self.url, params={"deviceId": "BIN-001"}, headers=self.headers)

        assert response.status_code == 200
        assert response.json() == {
            "registered": True,
            "workspaceId": workspace.id,
            "workspaceName": "Green Campus",
        }

    @pytest.mark.asyncio
    async def test_inactive_device_not_registered(
        self, client, db_session: AsyncSession, device: Device,
    ):
        device.status = DeviceStatus.INACTIVE
        await db_session.commit()

        response = await client.get(self.url, params={"deviceId": "BIN-001"}, headers=self.headers)

        assert response.status_code == 200
        data = response.json()
        assert data["registered"] is False
        assert "workspaceId" not in data

    @pytest.mark.asyncio
    async def test_unknown_device(self, client):
        response = await client.get(self.url, params={"deviceId": "BIN-404"}, headers=self.headers)

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "DEVICE_NOT_FOUND"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"X-API-Key": "wrong-key"}])
    async def test_rejects_bad_key(self, client, device: Device, headers):
        response = await client.get(self.url, params={"deviceId": "BIN-001"}, headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_requires_device_id(self, client):
        response = await client.get(self.url, headers=self.headers)

        assert response.status_code == 422
