"""Activity log store: append, incremental sync, graphs and retention."""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from harmony.core.config import settings
from harmony.core.metrics import record_purged
from harmony.models.activity import Activity, ActivityType
from harmony.models.base import as_utc, utcnow
from harmony.models.device import Device
from harmony.models.user import User
from harmony.services.workspace_service import WorkspaceService

logger = structlog.get_logger()

GRAPH_RANGES = ("today", "yesterday", "7days", "30days")


class ActivityQueryError(Exception):
    """Invalid activity query parameters."""

    code = "INVALID_QUERY"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@dataclass
class GraphWindow:
    """Resolved UTC window for a graph range."""

    range: str
    group_by: str
    start: datetime
    end: datetime
    end_inclusive: bool
    day_slots: int = 0


def midnight(value: datetime) -> datetime:
    """UTC midnight of the given instant's calendar day."""
    value = as_utc(value)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def resolve_window(range_name: str, now: datetime) -> GraphWindow:
    """Map a named range onto a UTC window."""
    today = midnight(now)
    if range_name == "today":
        return GraphWindow("today", "hour", today, now, end_inclusive=True)
    if range_name == "yesterday":
        return GraphWindow(
            "yesterday", "hour", today - timedelta(days=1), today, end_inclusive=False
        )
    if range_name in ("7days", "30days"):
        days = 7 if range_name == "7days" else 30
        return GraphWindow(
            range_name,
            "day",
            today - timedelta(days=days - 1),
            now,
            end_inclusive=True,
            day_slots=days,
        )
    raise ActivityQueryError(
        f"Invalid range '{range_name}'. Must be one of: {', '.join(GRAPH_RANGES)}"
    )


def parse_types(types: str | None) -> list[str]:
    if not types:
        return []
    return [t.strip().upper() for t in types.split(",") if t.strip()]


def day_label(day: datetime) -> str:
    # "Mar 7", no zero padding
    return f"{day.strftime('%b')} {day.day}"


def build_data_points(
    window: GraphWindow, rows: list[tuple[datetime, int]]
) -> list[dict[str, Any]]:
    """Zero-filled slots for the window from (created_at, points) rows."""
    counts: dict[Any, list[int]] = defaultdict(lambda: [0, 0])
    for created_at, points in rows:
        created_at = as_utc(created_at)
        key = created_at.hour if window.group_by == "hour" else created_at.date()
        counts[key][0] += 1
        counts[key][1] += points or 0

    data_points: list[dict[str, Any]] = []
    if window.group_by == "hour":
        for hour in range(24):
            count, points = counts.get(hour, (0, 0))
            data_points.append(
                {"label": f"{hour:02d}:00", "hour": hour, "count": count, "points": points}
            )
        return data_points

    for offset in range(window.day_slots):
        day = window.start + timedelta(days=offset)
        count, points = counts.get(day.date(), (0, 0))
        data_points.append(
            {
                "label": day_label(day),
                "date": day.date().isoformat(),
                "count": count,
                "points": points,
            }
        )
    return data_points


class ActivityService:
    """Service for the time-bounded raw activity log."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _live(self, now: datetime | None = None):
        """Filter excluding rows past their retention expiry."""
        return Activity.expires_at > (now or utcnow())

    def build(
        self,
        workspace_id: str,
        user_id: str,
        type: ActivityType,
        title: str,
        description: str,
        points: int = 0,
        device: Device | None = None,
        created_at: datetime | None = None,
        device_type: str | None = None,
    ) -> Activity:
        """Stage an activity in the session without committing.

        Callers that need the activity written atomically with other changes
        commit the session themselves. ``device_type`` overrides the snapshot
        taken from ``device``.
        """
        created_at = created_at or utcnow()
        if device_type is None and device is not None:
            device_type = device.type.value if hasattr(device.type, "value") else device.type
        activity = Activity(
            workspace_id=workspace_id,
            user_id=user_id,
            device_ref_id=device.id if device else None,
            device_type=device_type,
            type=type,
            title=title,
            description=description,
            points=points,
            created_at=created_at,
            expires_at=created_at + timedelta(days=settings.activity_retention_days),
        )
        self.db.add(activity)
        return activity

    async def append(self, workspace_id: str, user_id: str, type: ActivityType,
                     title: str, description: str, points: int = 0,
                     device: Device | None = None) -> str:
        """Write one activity and return its id."""
        activity = self.build(workspace_id, user_id, type, title, description, points, device)
        await self.db.commit()
        return activity.id

    async def query(
        self,
        workspace_id: str,
        user: User,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Activity]:
        """Incremental sync, most recent first.

        With ``since`` only strictly newer activities are returned; otherwise the
        caller's membership join date is the lower bound.
        """
        membership = await WorkspaceService(self.db).require_membership(workspace_id, user)
        if limit is not None and limit < 1:
            raise ActivityQueryError("limit must be a positive integer")

        query = select(Activity).where(
            Activity.workspace_id == workspace_id,
            self._live(),
        )
        if since is not None:
            query = query.where(Activity.created_at > as_utc(since))
        else:
            query = query.where(Activity.created_at >= as_utc(membership.joined_at))

        query = query.order_by(Activity.created_at.desc(), Activity.id.desc())
        if limit:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def graph(
        self,
        workspace_id: str,
        user: User,
        range_name: str = "today",
        types: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Bucketed counts/points for a chart, every slot present."""
        await WorkspaceService(self.db).require_membership(workspace_id, user)

        now = as_utc(now) if now else utcnow()
        window = resolve_window(range_name, now)
        type_filter = parse_types(types)

        query = select(Activity.created_at, Activity.points, Activity.type).where(
            Activity.workspace_id == workspace_id,
            Activity.created_at >= window.start,
            Activity.created_at <= window.end if window.end_inclusive else Activity.created_at < window.end,
            self._live(now),
        )
        if type_filter:
            query = query.where(Activity.type.in_(type_filter))

        result = await self.db.execute(query)
        rows = result.all()

        total_count = 0
        total_points = 0
        type_breakdown: dict[str, dict[str, int]] = {}
        for _, points, activity_type in rows:
            key = activity_type.value if hasattr(activity_type, "value") else activity_type
            entry = type_breakdown.setdefault(key, {"count": 0, "points": 0})
            entry["count"] += 1
            entry["points"] += points or 0
            total_count += 1
            total_points += points or 0

        return {
            "range": window.range,
            "groupBy": window.group_by,
            "startDate": window.start.isoformat(),
            "endDate": window.end.isoformat(),
            "dataPoints": build_data_points(window, [(r[0], r[1]) for r in rows]),
            "totals": {"totalActivities": total_count, "totalPoints": total_points},
            "typeBreakdown": type_breakdown,
        }

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Physically delete activities whose retention window has elapsed."""
        now = now or utcnow()
        result = await self.db.execute(delete(Activity).where(Activity.expires_at <= now))
        await self.db.commit()

        purged = result.rowcount or 0
        record_purged(purged)
        if purged:
            logger.info("Expired activities purged", count=purged, cutoff=now.isoformat())
        return purged


def to_sync_item(activity: Activity) -> dict[str, Any]:
    """Client-facing shape of one activity."""
    return {
        "id": activity.id,
        "workspaceId": activity.workspace_id,
        "userId": activity.user_id,
        "deviceId": activity.device_ref_id,
        "deviceType": activity.device_type,
        "type": activity.type.value if hasattr(activity.type, "value") else activity.type,
        "title": activity.title,
        "description": activity.description,
        "points": activity.points,
        "createdAt": as_utc(activity.created_at).isoformat(),
    }


__all__ = [
    "ActivityService",
    "ActivityQueryError",
    "GraphWindow",
    "resolve_window",
    "build_data_points",
    "parse_types",
    "to_sync_item",
]
