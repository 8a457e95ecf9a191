"""Tests for workspace membership and cascading deletion."""

from datetime import date, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import auth_headers
from harmony.models.activity import Activity
from harmony.models.activity_archive import ActivityArchive
from harmony.models.base import utcnow
from harmony.models.device import Device
from harmony.models.notification import Notification
from harmony.models.user import User
from harmony.models.workspace import Workspace, WorkspaceMember
from harmony.services.device_service import DeviceService
from harmony.services.workspace_service import (
    MembershipError,
    WorkspaceNotFoundError,
    WorkspacePermissionError,
    WorkspaceService,
)


async def count(db: AsyncSession, model, workspace_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(model).where(model.workspace_id == workspace_id)
    )
    return result.scalar()


class TestMembership:

    @pytest.mark.asyncio
    async def test_require_membership(
        self, db_session: AsyncSession, workspace: Workspace, member: User, outsider: User,
    ):
        service = WorkspaceService(db_session)

        membership = await service.require_membership(workspace.id, member)
        assert membership.user_id == member.id

        with pytest.raises(MembershipError):
            await service.require_membership(workspace.id, outsider)


class TestWorkspaceDeletion:
    """Owner-only cascading delete."""

    @pytest.mark.asyncio
    async def test_cascade_keeps_archives(
        self, db_session: AsyncSession, workspace: Workspace, other_workspace: Workspace,
        owner: User, member: User, make_activity,
    ):
        await DeviceService(db_session).register_device(workspace.id, owner, "BIN-1", "SMART_BIN")
        await make_activity(workspace.id, member.id, utcnow() - timedelta(hours=1))
        await make_activity(other_workspace.id, owner.id, utcnow() - timedelta(hours=1))
        db_session.add(
            ActivityArchive(workspace_id=workspace.id, date=date(2026, 3, 1), timeline=[])
        )
        await db_session.commit()

        deletion = await WorkspaceService(db_session).delete_workspace(workspace.id, owner)

        assert deletion.deleted == {
            "devices": 1,
            "members": 2,
            "notifications": 1,
            "activities": 2,
        }
        for model in (Device, WorkspaceMember, Notification, Activity):
            assert await count(db_session, model, workspace.id) == 0
        assert await count(db_session, ActivityArchive, workspace.id) == 1
        assert await count(db_session, Activity, other_workspace.id) == 1
        assert (
            await db_session.execute(select(Workspace).where(Workspace.id == workspace.id))
        ).scalar_one_or_none() is None

    @pytest.mark.asyncio
    async def test_only_owner(self, db_session: AsyncSession, workspace: Workspace, member: User):
        with pytest.raises(WorkspacePermissionError):
            await WorkspaceService(db_session).delete_workspace(workspace.id, member)

        assert await WorkspaceService(db_session).get_workspace(workspace.id) is not None

    @pytest.mark.asyncio
    async def test_missing_workspace(self, db_session: AsyncSession, owner: User):
        with pytest.raises(WorkspaceNotFoundError):
            await WorkspaceService(db_session).delete_workspace("0123456789abcdef01234567", owner)

    @pytest.mark.asyncio
    async def test_delete_endpoint(self, client, workspace: Workspace, owner: User, member: User):
        forbidden = await client.delete(
            f"/api/v1/workspaces/{workspace.id}", headers=auth_headers(member)
        )
        assert forbidden.status_code == 403

        response = await client.delete(
            f"/api/v1/workspaces/{workspace.id}", headers=auth_headers(owner)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["workspaceId"] == workspace.id
        assert data["deleted"]["members"] == 2
