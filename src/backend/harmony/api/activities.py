"""Workspace activity feed, graph and export endpoints."""

from datetime import datetime

from fastapi import APIRouter, Query, Response
from pydantic import BaseModel

from harmony.api.errors import service_error
from harmony.core.deps import CurrentUser, DbSession
from harmony.models.base import utcnow
from harmony.services.activity_service import ActivityQueryError, ActivityService, to_sync_item
from harmony.services.archive_service import ArchiveQueryService, ArchiveValidationError
from harmony.services.export_writer import CSV_MEDIA_TYPE, export_headers, render_csv
from harmony.services.workspace_service import MembershipError

router = APIRouter()


class ExportRequest(BaseModel):
    """Export request; ownership selects raw detail rows or archive aggregates."""
    ownership: str = "ALL"
    deviceType: str | None = None
    activityType: str | None = None
    startDate: datetime | None = None
    endDate: datetime | None = None


@router.get("/{workspace_id}/activities")
async def list_activities(
    workspace_id: str,
    db: DbSession,
    current_user: CurrentUser,
    since: datetime | None = None,
    limit: int | None = Query(None, ge=1, le=1000),
) -> dict:
    """Incremental activity sync, most recent first."""
    service = ActivityService(db)
    try:
        activities = await service.query(workspace_id, current_user, since=since, limit=limit)
    except (MembershipError, ActivityQueryError) as e:
        raise service_error(e)

    return {
        "activities": [to_sync_item(a) for a in activities],
        "count": len(activities),
        "syncedAt": utcnow().isoformat(),
    }


@router.get("/{workspace_id}/activities/graph")
async def activity_graph(
    workspace_id: str,
    db: DbSession,
    current_user: CurrentUser,
    range: str = "today",
    types: str | None = None,
) -> dict:
    """Zero-filled activity counts for charts."""
    service = ActivityService(db)
    try:
        return await service.graph(workspace_id, current_user, range_name=range, types=types)
    except (MembershipError, ActivityQueryError) as e:
        raise service_error(e)


@router.get("/{workspace_id}/activities/export-info")
async def export_info(
    workspace_id: str,
    db: DbSession,
    current_user: CurrentUser,
) -> dict:
    """Date limits per export scope and the available filter values."""
    service = ArchiveQueryService(db)
    try:
        return await service.export_info(workspace_id, current_user)
    except MembershipError as e:
        raise service_error(e)


@router.post("/{workspace_id}/activities/export")
async def export_activities(
    workspace_id: str,
    body: ExportRequest,
    db: DbSession,
    current_user: CurrentUser,
) -> Response:
    """Export activities as CSV."""
    service = ArchiveQueryService(db)
    try:
        export = await service.export_rows(
            workspace_id,
            current_user,
            scope=body.ownership,
            device_type=body.deviceType,
            activity_type=body.activityType,
            start=body.startDate,
            end=body.endDate,
        )
    except (MembershipError, ArchiveValidationError) as e:
        raise service_error(e)

    return Response(
        content=render_csv(export),
        media_type=CSV_MEDIA_TYPE,
        headers=export_headers(export, utcnow().date()),
    )
