"""Workspace notification records for device lifecycle events.

Only the record is kept here; pushing it to clients is handled elsewhere.
"""

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from harmony.models.notification import Notification, NotificationType

logger = structlog.get_logger()


class NotificationService:
    """Service for workspace-wide notifications."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def record(
        self,
        workspace_id: str,
        type: NotificationType,
        title: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> Notification:
        """Stage a notification; committed with the caller's transaction."""
        notification = Notification(
            workspace_id=workspace_id,
            type=type,
            title=title,
            message=message,
            details=details or {},
        )
        self.db.add(notification)
        logger.debug("Notification recorded", workspace_id=workspace_id, type=type.value)
        return notification
