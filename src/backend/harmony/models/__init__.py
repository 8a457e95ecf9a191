"""Harmony Database Models."""

from harmony.models.base import Base, IdMixin, TimestampMixin, generate_id, is_object_id
from harmony.models.user import User
from harmony.models.workspace import (
    Workspace,
    WorkspaceType,
    WorkspaceMember,
    MemberRole,
    MemberPermission,
)
from harmony.models.device import Device, DeviceType, DeviceStatus
from harmony.models.activity import Activity, ActivityType
from harmony.models.activity_archive import ActivityArchive
from harmony.models.notification import Notification, NotificationType

__all__ = [
    "Base",
    "IdMixin",
    "TimestampMixin",
    "generate_id",
    "is_object_id",
    "User",
    "Workspace",
    "WorkspaceType",
    "WorkspaceMember",
    "MemberRole",
    "MemberPermission",
    "Device",
    "DeviceType",
    "DeviceStatus",
    "Activity",
    "ActivityType",
    "ActivityArchive",
    "Notification",
    "NotificationType",
]
