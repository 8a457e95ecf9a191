"""Raw activity event model (time-bounded, expires after the retention window)."""

from datetime import datetime
from enum import Enum

from sqlalchemy import String, Text, Integer, Index
from sqlalchemy import Enum as SQLEnum, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from harmony.models.base import Base, IdMixin, utcnow


class ActivityType(str, Enum):
    """Workspace activity classification."""

    SCAN = "SCAN"
    DEVICE_ADDED = "DEVICE_ADDED"
    DEVICE_REMOVED = "DEVICE_REMOVED"
    DEVICE_TRANSFERRED_OUT = "DEVICE_TRANSFERRED_OUT"
    DEVICE_TRANSFERRED_IN = "DEVICE_TRANSFERRED_IN"
    MEMBER_JOINED = "MEMBER_JOINED"
    MEMBER_LEFT = "MEMBER_LEFT"
    ACHIEVEMENT = "ACHIEVEMENT"
    REWARD = "REWARD"
    GENERIC = "GENERIC"


class Activity(Base, IdMixin):
    """Immutable raw activity event.

    Do NOT add updated_at - rows are never mutated. Rows past expires_at are
    treated as gone by every query and physically removed by the retention sweep.
    """

    __tablename__ = "activities"
    __table_args__ = (
        Index("ix_activities_workspace_created", "workspace_id", "created_at"),
        Index("ix_activities_user_created", "user_id", "created_at"),
    )

    # Associative references (lookup only, no FK so history survives deletes)
    workspace_id: Mapped[str] = mapped_column(String(24), nullable=False)
    user_id: Mapped[str] = mapped_column(String(24), nullable=False)
    device_ref_id: Mapped[str | None] = mapped_column(String(24), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    type: Mapped[ActivityType] = mapped_column(
        SQLEnum(ActivityType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Activity(id={self.id}, type={self.type}, workspace_id={self.workspace_id})>"
