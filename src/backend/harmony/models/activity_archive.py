"""Daily activity archive model.

One row per (workspace, UTC calendar day). Raw activities live for the
retention window; the daily compaction job folds them into these rows,
bucketed by hour, type and device type. Archives never expire.
"""

import datetime

from sqlalchemy import String, Integer, Date, JSON, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from harmony.models.base import Base, IdMixin, TimestampMixin


class ActivityArchive(Base, IdMixin, TimestampMixin):
    """Compacted daily rollup of a workspace's activity."""

    __tablename__ = "activity_archives"
    __table_args__ = (
        # Never two documents for the same workspace/day; upserts target this key
        UniqueConstraint("workspace_id", "date", name="uq_activity_archives_workspace_date"),
        Index("ix_activity_archives_date", "date"),
    )

    workspace_id: Mapped[str] = mapped_column(String(24), nullable=False, index=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    # Daily stats
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_activities: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active_users_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # [{hour, type, deviceType, count, points, userIds}]
    timeline: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    def __repr__(self) -> str:
        return f"<ActivityArchive(workspace_id={self.workspace_id}, date={self.date})>"

    def to_document(self) -> dict:
        """Content of the day document, independent of bookkeeping columns."""
        return {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "date": self.date.isoformat(),
            "stats": {
                "totalPoints": self.total_points,
                "totalActivities": self.total_activities,
                "activeUsersCount": self.active_users_count,
            },
            "timeline": self.timeline,
        }
