"""Declarative base, shared mixins and identifier helpers."""

import os
import re
import time
from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")


def generate_id() -> str:
    """Generate a 24-hex record identifier (4-byte seconds + 8 random bytes)."""
    return int(time.time()).to_bytes(4, "big").hex() + os.urandom(8).hex()


def is_object_id(value: str | None) -> bool:
    """Check whether a value has the 24-hex record identifier shape."""
    return bool(value) and OBJECT_ID_PATTERN.match(value) is not None


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all Harmony models."""

    pass


class IdMixin:
    """24-hex string primary key."""

    id: Mapped[str] = mapped_column(
        String(24),
        primary_key=True,
        default=generate_id,
    )


class TimestampMixin:
    """created_at / updated_at columns maintained by the ORM."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
