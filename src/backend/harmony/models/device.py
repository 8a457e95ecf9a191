"""IoT device model: bins, lamps, locks and RFID readers bound to one workspace."""

from datetime import datetime
from enum import Enum

from sqlalchemy import String, BigInteger, ForeignKey
from sqlalchemy import Enum as SQLEnum, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from harmony.models.base import Base, IdMixin, TimestampMixin, utcnow


class DeviceType(str, Enum):
    """IoT device type classification."""

    SMART_BIN = "SMART_BIN"
    SMART_LAMP = "SMART_LAMP"
    ACCESS_CONTROL = "ACCESS_CONTROL"
    RFID_READER = "RFID_READER"
    GENERIC = "GENERIC"

    @property
    def label(self) -> str:
        return DEVICE_TYPE_LABELS[self]


DEVICE_TYPE_LABELS: dict[DeviceType, str] = {
    DeviceType.SMART_BIN: "Smart Bin",
    DeviceType.SMART_LAMP: "Smart Lamp",
    DeviceType.ACCESS_CONTROL: "Access Control",
    DeviceType.RFID_READER: "RFID Reader",
    DeviceType.GENERIC: "Device",
}


class DeviceStatus(str, Enum):
    """Device operational status."""

    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class Device(Base, IdMixin, TimestampMixin):
    """IoT device exclusively owned by one workspace at a time."""

    __tablename__ = "devices"

    # Hardware-assigned identifier printed in the device QR code
    device_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True, unique=True, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[DeviceType] = mapped_column(
        SQLEnum(DeviceType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    status: Mapped[DeviceStatus] = mapped_column(
        SQLEnum(DeviceStatus, values_callable=lambda x: [e.value for e in x]),
        default=DeviceStatus.ACTIVE,
        nullable=False,
    )

    workspace_id: Mapped[str] = mapped_column(
        String(24),
        ForeignKey("workspaces.id"),
        nullable=False,
        index=True,
    )

    # Type-specific scalar values, see harmony.models.device_metadata
    properties: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    last_seen: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=True
    )

    # Replay protection floor; only ever increases
    last_unique_code: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Device(id={self.id}, device_id={self.device_id}, type={self.type})>"

    @property
    def type_label(self) -> str:
        return DeviceType(self.type).label
