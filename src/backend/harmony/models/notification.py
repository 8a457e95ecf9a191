"""Workspace notification records (delivery transport is external)."""

from datetime import datetime
from enum import Enum

from sqlalchemy import String, Text
from sqlalchemy import Enum as SQLEnum, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from harmony.models.base import Base, IdMixin, utcnow


class NotificationType(str, Enum):
    """Notification classification."""

    DEVICE_ADDED = "DEVICE_ADDED"
    DEVICE_REMOVED = "DEVICE_REMOVED"
    DEVICE_TRANSFERRED = "DEVICE_TRANSFERRED"
    DEVICE_RECEIVED = "DEVICE_RECEIVED"
    INFO = "INFO"


class Notification(Base, IdMixin):
    """Workspace-wide notification."""

    __tablename__ = "notifications"

    workspace_id: Mapped[str] = mapped_column(String(24), nullable=False, index=True)
    type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, type={self.type})>"
