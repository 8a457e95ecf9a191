"""Workspace lifecycle endpoints."""

from fastapi import APIRouter

from harmony.api.errors import service_error
from harmony.core.deps import CurrentUser, DbSession
from harmony.services.workspace_service import WorkspaceError, WorkspaceService

router = APIRouter()


@router.delete("/{workspace_id}")
async def delete_workspace(
    workspace_id: str,
    db: DbSession,
    current_user: CurrentUser,
) -> dict:
    """Delete a workspace with its devices, members, notifications and activities.

    Only the owner may delete. Daily archives are kept.
    """
    service = WorkspaceService(db)
    try:
        deletion = await service.delete_workspace(workspace_id, current_user)
    except WorkspaceError as e:
        raise service_error(e)

    return {
        "message": "Workspace deleted successfully",
        "workspaceId": deletion.workspace_id,
        "deleted": deletion.deleted,
    }
