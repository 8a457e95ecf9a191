"""Harmony Services Module."""

from harmony.services.qr_codec import QRCodec, QRCodecConfig, QRDecryptionError, QRValidationError
from harmony.services.workspace_service import WorkspaceService, WorkspaceError, MembershipError
from harmony.services.notification_service import NotificationService
from harmony.services.activity_service import ActivityService, ActivityQueryError
from harmony.services.device_service import DeviceService, DeviceError
from harmony.services.scan_service import ScanService, ScanRequest, ScanError
from harmony.services.archive_service import (
    ArchiveCompactor,
    ArchiveQueryService,
    ArchiveError,
    ArchiveValidationError,
)
from harmony.services.archive_scheduler import ArchiveScheduler

__all__ = [
    "QRCodec",
    "QRCodecConfig",
    "QRDecryptionError",
    "QRValidationError",
    "WorkspaceService",
    "WorkspaceError",
    "MembershipError",
    "NotificationService",
    "ActivityService",
    "ActivityQueryError",
    "DeviceService",
    "DeviceError",
    "ScanService",
    "ScanRequest",
    "ScanError",
    "ArchiveCompactor",
    "ArchiveQueryService",
    "ArchiveError",
    "ArchiveValidationError",
    "ArchiveScheduler",
]
