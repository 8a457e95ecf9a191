"""Archive administration endpoints (platform admins only)."""

from fastapi import APIRouter, Query
from pydantic import BaseModel

from harmony.api.errors import service_error
from harmony.core.deps import AdminUser, DbSession
from harmony.services.archive_service import (
    ArchiveCompactor,
    ArchiveError,
    ArchiveQueryService,
    parse_range,
)

router = APIRouter()


class ArchiveRangeRequest(BaseModel):
    """Custom compaction range, [startDate, endDate) as ISO dates."""
    startDate: str | None = None
    endDate: str | None = None


@router.post("/archive/run")
async def trigger_archive(db: DbSession, admin: AdminUser) -> dict:
    """Run the daily archive job for yesterday now."""
    try:
        result = await ArchiveCompactor(db).compact_yesterday()
    except ArchiveError as e:
        raise service_error(e)

    return {"message": "Archive job completed", **result.to_dict()}


@router.post("/archive/range")
async def archive_range(body: ArchiveRangeRequest, db: DbSession, admin: AdminUser) -> dict:
    """Re-derive archive documents for a custom range."""
    try:
        start, end = parse_range(body.startDate, body.endDate)
        result = await ArchiveCompactor(db).compact(start, end)
    except ArchiveError as e:
        raise service_error(e)

    return {
        "message": "Archive completed for date range",
        "startDate": body.startDate,
        "endDate": body.endDate,
        **result.to_dict(),
    }


@router.get("/archive/stats/{workspace_id}")
async def archive_stats(
    workspace_id: str,
    db: DbSession,
    admin: AdminUser,
    days: int = Query(7),
) -> dict:
    """Archived totals for a workspace over the last ``days`` days."""
    try:
        return await ArchiveQueryService(db).stats(workspace_id, days)
    except ArchiveError as e:
        raise service_error(e)


@router.get("/archive/breakdown/{workspace_id}")
async def archive_breakdown(
    workspace_id: str,
    db: DbSession,
    admin: AdminUser,
    days: int = Query(30),
) -> dict:
    """Per-type counts and points from archives."""
    try:
        breakdown = await ArchiveQueryService(db).type_breakdown(workspace_id, days)
    except ArchiveError as e:
        raise service_error(e)

    return {"workspaceId": workspace_id, "period": f"last_{days}_days", "breakdown": breakdown}


@router.get("/archive/health")
async def archive_health(db: DbSession, admin: AdminUser) -> dict:
    """Archive and raw log document counts."""
    return await ArchiveQueryService(db).health()
