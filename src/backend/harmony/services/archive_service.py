"""Activity archive compaction and archive-backed queries.

Raw activities only live for the retention window. Once a day the compactor
folds the previous UTC day's raw rows into one archive row per workspace:

1. raw rows are grouped into hour buckets keyed by
   (workspace, type, deviceType, day, hour), each holding a count, summed
   points and the set of contributing user ids;
2. hour buckets are regrouped per (workspace, day); the day's distinct user
   count is the size of the union of its bucket user sets;
3. each day document is upserted on (workspace_id, date), fully replacing
   any previous version.

The grouping is a pure function of the raw rows in range, so compacting the
same range twice writes identical documents.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Any, Iterable

import structlog
from sqlalchemy import select, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from harmony.core.config import settings
from harmony.core.metrics import observe_compaction
from harmony.models.activity import Activity, ActivityType
from harmony.models.activity_archive import ActivityArchive
from harmony.models.base import as_utc, generate_id, utcnow
from harmony.models.device import DeviceType
from harmony.models.user import User
from harmony.services.workspace_service import WorkspaceService

logger = structlog.get_logger()

MIN_LOOKBACK_DAYS = 1
MAX_LOOKBACK_DAYS = 365

# Day documents per upsert statement; 9 bound params each stays far below
# the 32767 parameter cap of the PostgreSQL protocol
UPSERT_CHUNK_SIZE = 500

EXPORT_SCOPES = ("ALL", "MY_ACTIVITY")
DETAIL_COLUMNS = ["Date", "Time", "Type", "Title", "Description", "Device Type", "Points"]
AGGREGATE_COLUMNS = ["Date", "Hour", "Type", "Device Type", "Count", "Points"]


class ArchiveError(Exception):
    """Compaction or archive persistence failed."""

    code = "ARCHIVE_FAILED"
    status_code = 500

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class ArchiveValidationError(ArchiveError):
    """Caller-correctable input problem (dates, lookback window, scope)."""

    code = "INVALID_REQUEST"
    status_code = 400


# Pure grouping


@dataclass
class HourBucket:
    count: int = 0
    points: int = 0
    user_ids: set[str] = field(default_factory=set)


@dataclass
class DayDocument:
    workspace_id: str
    date: date
    total_points: int
    total_activities: int
    active_users_count: int
    timeline: list[dict[str, Any]]


BucketKey = tuple[str, str, str | None, date, int]


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def bucket_by_hour(rows: Iterable[tuple]) -> dict[BucketKey, HourBucket]:
    """Group raw (workspace_id, user_id, type, device_type, points, created_at) rows."""
    buckets: dict[BucketKey, HourBucket] = defaultdict(HourBucket)
    for workspace_id, user_id, activity_type, device_type, points, created_at in rows:
        created_at = as_utc(created_at)
        key = (
            workspace_id,
            _enum_value(activity_type),
            device_type,
            created_at.date(),
            created_at.hour,
        )
        bucket = buckets[key]
        bucket.count += 1
        bucket.points += points or 0
        bucket.user_ids.add(user_id)
    return buckets


def roll_up_days(buckets: dict[BucketKey, HourBucket]) -> list[DayDocument]:
    """Regroup hour buckets into one document per (workspace, day)."""
    per_day: dict[tuple[str, date], list[tuple[BucketKey, HourBucket]]] = defaultdict(list)
    for key, bucket in buckets.items():
        workspace_id, _, _, day, _ = key
        per_day[(workspace_id, day)].append((key, bucket))

    documents = []
    for (workspace_id, day), entries in sorted(per_day.items()):
        users: set[str] = set()
        timeline = []
        for (_, activity_type, device_type, _, hour), bucket in entries:
            users |= bucket.user_ids
            timeline.append(
                {
                    "hour": hour,
                    "type": activity_type,
                    "deviceType": device_type,
                    "count": bucket.count,
                    "points": bucket.points,
                    "userIds": sorted(bucket.user_ids),
                }
            )
        timeline.sort(key=lambda t: (t["hour"], t["type"], t["deviceType"] or ""))

        documents.append(
            DayDocument(
                workspace_id=workspace_id,
                date=day,
                total_points=sum(t["points"] for t in timeline),
                total_activities=sum(t["count"] for t in timeline),
                # Union, not sum: a user active in several buckets counts once
                active_users_count=len(users),
                timeline=timeline,
            )
        )
    return documents


def group_rows(rows: list[tuple]) -> list[DayDocument]:
    return roll_up_days(bucket_by_hour(rows))


def to_utc_datetime(value: date | datetime) -> datetime:
    """Dates become UTC midnight; datetimes are normalized to UTC."""
    if isinstance(value, datetime):
        return as_utc(value)
    return datetime.combine(value, dt_time.min, tzinfo=timezone.utc)


def parse_range(start: str | None, end: str | None) -> tuple[datetime, datetime]:
    """Validate an operator-supplied [start, end) range of ISO dates.

    Only whole days are accepted; a time of day would replace a day
    document with a partial one.
    """
    if not start or not end:
        raise ArchiveValidationError("startDate and endDate are required", code="MISSING_DATES")
    try:
        start_at = to_utc_datetime(date.fromisoformat(start))
        end_at = to_utc_datetime(date.fromisoformat(end))
    except ValueError:
        raise ArchiveValidationError(
            "Invalid date format. Use ISO format (YYYY-MM-DD)", code="INVALID_DATES"
        ) from None
    if start_at >= end_at:
        raise ArchiveValidationError("startDate must be before endDate", code="INVALID_RANGE")
    return start_at, end_at


@dataclass
class CompactionResult:
    duration_ms: int
    days_written: int
    source_rows: int

    def to_dict(self) -> dict[str, int]:
        return {
            "duration": self.duration_ms,
            "daysWritten": self.days_written,
            "sourceRows": self.source_rows,
        }


class ArchiveCompactor:
    """Folds raw activities into permanent daily archive documents."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(ActivityArchive)
        if dialect == "sqlite":
            return sqlite.insert(ActivityArchive)
        raise ArchiveError(f"Archive upsert is not supported on {dialect}")

    async def compact(self, start: date | datetime, end: date | datetime) -> CompactionResult:
        """Compact raw activities created in [start, end)."""
        start_at = to_utc_datetime(start)
        end_at = to_utc_datetime(end)
        if start_at >= end_at:
            raise ArchiveValidationError("startDate must be before endDate", code="INVALID_RANGE")

        started = time.monotonic()
        logger.info("Archive compaction started", start=start_at.isoformat(), end=end_at.isoformat())

        try:
            result = await self.db.execute(
                select(
                    Activity.workspace_id,
                    Activity.user_id,
                    Activity.type,
                    Activity.device_type,
                    Activity.points,
                    Activity.created_at,
                ).where(
                    Activity.created_at >= start_at,
                    Activity.created_at < end_at,
                    Activity.expires_at > utcnow(),
                )
            )
            rows = result.all()
            # Grouping a full day is CPU heavy; keep it off the event loop
            documents = await asyncio.to_thread(group_rows, rows)

            if documents:
                await self._upsert(documents)
            await self.db.commit()
        except ArchiveError:
            await self.db.rollback()
            raise
        except Exception as e:
            await self.db.rollback()
            logger.exception(
                "Archive compaction failed", start=start_at.isoformat(), end=end_at.isoformat()
            )
            raise ArchiveError(f"Archive compaction failed: {e}") from e

        duration = time.monotonic() - started
        observe_compaction(duration, len(documents))
        compaction = CompactionResult(
            duration_ms=int(duration * 1000),
            days_written=len(documents),
            source_rows=len(rows),
        )
        logger.info(
            "Archive compaction finished",
            duration_ms=compaction.duration_ms,
            days_written=compaction.days_written,
            source_rows=compaction.source_rows,
        )
        return compaction

    async def _upsert(self, documents: list[DayDocument]) -> None:
        """Upsert in fixed-size chunks inside the caller's transaction."""
        now = utcnow()
        for offset in range(0, len(documents), UPSERT_CHUNK_SIZE):
            await self._upsert_chunk(documents[offset:offset + UPSERT_CHUNK_SIZE], now)

    async def _upsert_chunk(self, documents: list[DayDocument], now: datetime) -> None:
        stmt = self._insert().values(
            [
                {
                    "id": generate_id(),
                    "workspace_id": doc.workspace_id,
                    "date": doc.date,
                    "total_points": doc.total_points,
                    "total_activities": doc.total_activities,
                    "active_users_count": doc.active_users_count,
                    "timeline": doc.timeline,
                    "created_at": now,
                    "updated_at": now,
                }
                for doc in documents
            ]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ActivityArchive.workspace_id, ActivityArchive.date],
            set_={
                "total_points": stmt.excluded.total_points,
                "total_activities": stmt.excluded.total_activities,
                "active_users_count": stmt.excluded.active_users_count,
                "timeline": stmt.excluded.timeline,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.db.execute(stmt)

    async def compact_yesterday(self, now: datetime | None = None) -> CompactionResult:
        """Compact [yesterday 00:00 UTC, today 00:00 UTC)."""
        now = as_utc(now) if now else utcnow()
        end = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return await self.compact(end - timedelta(days=1), end)


# Queries


@dataclass
class ExportResult:
    scope: str
    shape: str
    columns: list[str]
    rows: list[list[Any]]


def validate_lookback(days: int) -> int:
    """Lookback windows are bounded, never clamped."""
    if not isinstance(days, int) or not MIN_LOOKBACK_DAYS <= days <= MAX_LOOKBACK_DAYS:
        raise ArchiveValidationError(
            f"days must be between {MIN_LOOKBACK_DAYS} and {MAX_LOOKBACK_DAYS}",
            code="INVALID_DAYS",
        )
    return days


def lookback_start(days: int, now: datetime) -> date:
    return (as_utc(now) - timedelta(days=days)).date()


def end_of_day(value: datetime) -> datetime:
    value = as_utc(value)
    return value.replace(hour=23, minute=59, second=59, microsecond=999999)


class ArchiveQueryService:
    """Stats, breakdowns and exports over archives and the raw log."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _archives_since(self, workspace_id: str, since: date) -> list[ActivityArchive]:
        result = await self.db.execute(
            select(ActivityArchive)
            .where(ActivityArchive.workspace_id == workspace_id, ActivityArchive.date >= since)
            .order_by(ActivityArchive.date.desc())
        )
        return list(result.scalars().all())

    async def stats(
        self, workspace_id: str, days: int = 7, now: datetime | None = None
    ) -> dict[str, Any]:
        """Totals over the lookback window with users de-duplicated across days."""
        validate_lookback(days)
        archives = await self._archives_since(workspace_id, lookback_start(days, now or utcnow()))

        total_points = 0
        total_activities = 0
        unique_users: set[str] = set()
        daily_breakdown = []
        for day in archives:
            total_points += day.total_points
            total_activities += day.total_activities
            for entry in day.timeline:
                unique_users.update(entry.get("userIds", []))
            daily_breakdown.append(
                {
                    "date": day.date.isoformat(),
                    "points": day.total_points,
                    "activities": day.total_activities,
                    "users": day.active_users_count,
                }
            )

        return {
            "period": f"last_{days}_days",
            "totalPoints": total_points,
            "totalActivities": total_activities,
            "uniqueUsers": len(unique_users),
            "dailyBreakdown": daily_breakdown,
        }

    async def type_breakdown(
        self, workspace_id: str, days: int = 30, now: datetime | None = None
    ) -> dict[str, dict[str, int]]:
        validate_lookback(days)
        archives = await self._archives_since(workspace_id, lookback_start(days, now or utcnow()))

        breakdown: dict[str, dict[str, int]] = {}
        for day in archives:
            for entry in day.timeline:
                stats = breakdown.setdefault(entry["type"], {"count": 0, "points": 0})
                stats["count"] += entry["count"]
                stats["points"] += entry["points"]
        return breakdown

    async def export_rows(
        self,
        workspace_id: str,
        user: User,
        scope: str = "ALL",
        device_type: str | None = None,
        activity_type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        now: datetime | None = None,
    ) -> ExportResult:
        """Rows for an export, shaped by scope.

        MY_ACTIVITY reads the caller's raw activities and never reaches past
        the retention window; ALL flattens archive timelines with no time bound.
        """
        if scope not in EXPORT_SCOPES:
            raise ArchiveValidationError(
                f"ownership must be one of: {', '.join(EXPORT_SCOPES)}", code="INVALID_SCOPE"
            )
        await WorkspaceService(self.db).require_membership(workspace_id, user)

        now = as_utc(now) if now else utcnow()
        start = as_utc(start) if start else None
        end = end_of_day(end or now)
        if start and start > end:
            raise ArchiveValidationError("startDate must be before endDate", code="INVALID_RANGE")

        if scope == "MY_ACTIVITY":
            rows = await self._detail_rows(
                workspace_id, user, device_type, activity_type, start, end, now
            )
            return ExportResult(scope, "detail", DETAIL_COLUMNS, rows)

        rows = await self._aggregate_rows(workspace_id, device_type, activity_type, start, end)
        return ExportResult(scope, "aggregate", AGGREGATE_COLUMNS, rows)

    async def _detail_rows(
        self,
        workspace_id: str,
        user: User,
        device_type: str | None,
        activity_type: str | None,
        start: datetime | None,
        end: datetime,
        now: datetime,
    ) -> list[list[Any]]:
        floor = now - timedelta(days=settings.activity_retention_days)
        # Silently clamp to the retention floor
        effective_start = start if start and start > floor else floor

        query = select(Activity).where(
            Activity.workspace_id == workspace_id,
            Activity.user_id == user.id,
            Activity.created_at >= effective_start,
            Activity.created_at <= end,
            Activity.expires_at > now,
        )
        if device_type:
            query = query.where(Activity.device_type == device_type)
        if activity_type:
            query = query.where(Activity.type == activity_type)
        query = query.order_by(Activity.created_at.desc()).limit(settings.export_row_limit)

        result = await self.db.execute(query)
        rows = []
        for activity in result.scalars().all():
            created_at = as_utc(activity.created_at)
            rows.append(
                [
                    created_at.date().isoformat(),
                    created_at.strftime("%H:%M:%S"),
                    _enum_value(activity.type),
                    activity.title or "",
                    activity.description or "",
                    activity.device_type or "N/A",
                    activity.points or 0,
                ]
            )
        return rows

    async def _aggregate_rows(
        self,
        workspace_id: str,
        device_type: str | None,
        activity_type: str | None,
        start: datetime | None,
        end: datetime,
    ) -> list[list[Any]]:
        query = select(ActivityArchive).where(
            ActivityArchive.workspace_id == workspace_id,
            ActivityArchive.date <= end.date(),
        )
        if start:
            query = query.where(ActivityArchive.date >= start.date())
        query = query.order_by(ActivityArchive.date.desc())

        result = await self.db.execute(query)
        rows = []
        for day in result.scalars().all():
            for entry in day.timeline:
                if device_type and entry.get("deviceType") != device_type:
                    continue
                if activity_type and entry.get("type") != activity_type:
                    continue
                rows.append(
                    [
                        day.date.isoformat(),
                        f"{entry['hour']}:00" if entry.get("hour") is not None else "N/A",
                        entry["type"],
                        entry.get("deviceType") or "N/A",
                        entry["count"],
                        entry.get("points") or 0,
                    ]
                )
        return rows

    async def export_info(
        self, workspace_id: str, user: User, now: datetime | None = None
    ) -> dict[str, Any]:
        """Selectable date ranges per scope and the filter vocabularies."""
        await WorkspaceService(self.db).require_membership(workspace_id, user)
        now = as_utc(now) if now else utcnow()
        floor = now - timedelta(days=settings.activity_retention_days)

        earliest = (
            await self.db.execute(
                select(func.min(ActivityArchive.date)).where(
                    ActivityArchive.workspace_id == workspace_id
                )
            )
        ).scalar()

        return {
            "myActivity": {
                "minDate": floor.date().isoformat(),
                "maxDate": now.date().isoformat(),
                "note": f"Limited to last {settings.activity_retention_days} days",
            },
            "allActivities": {
                "minDate": earliest.isoformat() if earliest else None,
                "maxDate": now.date().isoformat(),
                "note": "Aggregated historical data",
            },
            "activityTypes": [t.value for t in ActivityType if t != ActivityType.GENERIC],
            "deviceTypes": [t.value for t in DeviceType],
        }

    async def health(self) -> dict[str, Any]:
        archive_count = (
            await self.db.execute(select(func.count()).select_from(ActivityArchive))
        ).scalar() or 0
        raw_count = (await self.db.execute(select(func.count()).select_from(Activity))).scalar() or 0
        oldest, newest = (
            await self.db.execute(select(func.min(ActivityArchive.date), func.max(ActivityArchive.date)))
        ).one()

        return {
            "archiveDocuments": archive_count,
            "rawActivityDocuments": raw_count,
            "oldestArchiveDate": oldest.isoformat() if oldest else None,
            "newestArchiveDate": newest.isoformat() if newest else None,
            "status": "healthy",
        }
