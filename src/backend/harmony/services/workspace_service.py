"""Workspace lookups, membership checks and cascading workspace deletion."""

from dataclasses import dataclass

import structlog
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from harmony.models.activity import Activity
from harmony.models.device import Device
from harmony.models.notification import Notification
from harmony.models.user import User
from harmony.models.workspace import Workspace, WorkspaceMember

logger = structlog.get_logger()


class WorkspaceError(Exception):
    """Workspace-related errors."""

    code = "WORKSPACE_ERROR"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class WorkspaceNotFoundError(WorkspaceError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, workspace_id: str):
        super().__init__(f"Workspace {workspace_id} not found")


class WorkspacePermissionError(WorkspaceError):
    code = "FORBIDDEN"
    status_code = 403


class MembershipError(WorkspaceError):
    """Caller holds no membership in the workspace."""

    code = "NOT_A_MEMBER"
    status_code = 403

    def __init__(self, message: str = "Not a member of this workspace"):
        super().__init__(message)


# Owned collections, deleted in this order before the workspace record
CASCADE_ORDER: list[tuple[str, type]] = [
    ("devices", Device),
    ("members", WorkspaceMember),
    ("notifications", Notification),
    ("activities", Activity),
]


@dataclass
class WorkspaceDeletion:
    """Per-collection deleted counts for one workspace deletion."""

    workspace_id: str
    deleted: dict[str, int]


class WorkspaceService:
    """Service for workspace membership and lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_workspace(self, workspace_id: str) -> Workspace | None:
        """Get workspace by ID."""
        result = await self.db.execute(
            select(Workspace).where(Workspace.id == workspace_id)
        )
        return result.scalar_one_or_none()

    async def get_membership(self, workspace_id: str, user_id: str) -> WorkspaceMember | None:
        """Get a user's membership record in a workspace."""
        result = await self.db.execute(
            select(WorkspaceMember).where(
                WorkspaceMember.workspace_id == workspace_id,
                WorkspaceMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def require_membership(self, workspace_id: str, user: User) -> WorkspaceMember:
        """Return the caller's membership or raise MembershipError."""
        membership = await self.get_membership(workspace_id, user.id)
        if membership is None:
            raise MembershipError()
        return membership

    async def delete_workspace(self, workspace_id: str, actor: User) -> WorkspaceDeletion:
        """Delete a workspace and everything it owns. Owner only.

        Archive documents are permanent history and are not removed.
        """
        workspace = await self.get_workspace(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(workspace_id)
        if workspace.owner_id != actor.id:
            raise WorkspacePermissionError("Only workspace owner can delete")

        logger.info("Starting workspace deletion", workspace_id=workspace_id, name=workspace.name)

        deleted: dict[str, int] = {}
        try:
            for name, model in CASCADE_ORDER:
                result = await self.db.execute(
                    delete(model).where(model.workspace_id == workspace_id)
                )
                deleted[name] = result.rowcount or 0
                logger.info("Cascade delete", workspace_id=workspace_id, collection=name, count=deleted[name])

            await self.db.delete(workspace)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception("Workspace deletion failed", workspace_id=workspace_id)
            raise

        logger.info("Workspace deleted", workspace_id=workspace_id, deleted=deleted)
        return WorkspaceDeletion(workspace_id=workspace_id, deleted=deleted)
