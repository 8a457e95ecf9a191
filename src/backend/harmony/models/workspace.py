"""Workspace and membership models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import String, Text, Integer, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy import Enum as SQLEnum, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from harmony.models.base import Base, IdMixin, TimestampMixin, utcnow


class WorkspaceType(str, Enum):
    """Workspace classification."""

    PRIVATE = "PRIVATE"
    ORGANIZATION = "ORGANIZATION"


class MemberRole(str, Enum):
    """Role of a user within one workspace."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    REGULAR_USER = "REGULAR_USER"


class MemberPermission(str, Enum):
    """Granular permissions granted to workspace admins."""

    # Device management
    ADD_DEVICE = "ADD_DEVICE"
    REMOVE_DEVICE = "REMOVE_DEVICE"
    TRANSFER_DEVICE = "TRANSFER_DEVICE"
    UPDATE_DEVICE = "UPDATE_DEVICE"

    # Member management
    INVITE_MEMBERS = "INVITE_MEMBERS"
    INVITE_ADMIN = "INVITE_ADMIN"
    PROMOTE_DEMOTE_MEMBERS = "PROMOTE_DEMOTE_MEMBERS"
    KICK_MEMBERS = "KICK_MEMBERS"


class Workspace(Base, IdMixin, TimestampMixin):
    """A tenant grouping devices, members and activity."""

    __tablename__ = "workspaces"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[WorkspaceType] = mapped_column(
        SQLEnum(WorkspaceType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    owner_id: Mapped[str] = mapped_column(
        String(24),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Workspace(id={self.id}, name={self.name})>"


class WorkspaceMember(Base, IdMixin, TimestampMixin):
    """Join entity granting a user a role, permissions and points in a workspace."""

    __tablename__ = "workspace_members"
    __table_args__ = (
        UniqueConstraint("user_id", "workspace_id", name="uq_workspace_members_user_workspace"),
        CheckConstraint("points >= 0", name="ck_workspace_members_points_non_negative"),
        CheckConstraint("scan_count >= 0", name="ck_workspace_members_scan_count_non_negative"),
    )

    user_id: Mapped[str] = mapped_column(
        String(24),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workspace_id: Mapped[str] = mapped_column(
        String(24),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[MemberRole] = mapped_column(
        SQLEnum(MemberRole, values_callable=lambda x: [e.value for e in x]),
        default=MemberRole.REGULAR_USER,
        nullable=False,
    )
    permissions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    scan_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Lower bound for the member's first activity sync
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<WorkspaceMember(user_id={self.user_id}, workspace_id={self.workspace_id}, role={self.role})>"

    @property
    def is_owner(self) -> bool:
        return self.role == MemberRole.OWNER

    def has_permission(self, permission: MemberPermission) -> bool:
        """Owners hold every permission; admins only what they were granted."""
        if self.role == MemberRole.OWNER:
            return True
        if self.role != MemberRole.ADMIN:
            return False
        return permission.value in (self.permissions or [])
