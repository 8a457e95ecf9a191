"""Initial schema for Harmony

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVITY_TYPES = (
    "SCAN", "DEVICE_ADDED", "DEVICE_REMOVED", "DEVICE_TRANSFERRED_OUT",
    "DEVICE_TRANSFERRED_IN", "MEMBER_JOINED", "MEMBER_LEFT", "ACHIEVEMENT",
    "REWARD", "GENERIC",
)
DEVICE_TYPES = ("SMART_BIN", "SMART_LAMP", "ACCESS_CONTROL", "RFID_READER", "GENERIC")


def upgrade() -> None:
    # Create users table
    op.create_table(
        "users",
        sa.Column("id", sa.String(24), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("scan_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_admin", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Create workspaces table
    op.create_table(
        "workspaces",
        sa.Column("id", sa.String(24), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column(
            "type",
            sa.Enum("PRIVATE", "ORGANIZATION", name="workspacetype"),
            nullable=False,
        ),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("owner_id", sa.String(24), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Create workspace_members table
    op.create_table(
        "workspace_members",
        sa.Column("id", sa.String(24), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(24),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "workspace_id",
            sa.String(24),
            sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "role",
            sa.Enum("OWNER", "ADMIN", "REGULAR_USER", name="memberrole"),
            nullable=False,
            server_default="REGULAR_USER",
        ),
        sa.Column("permissions", sa.JSON, nullable=False),
        sa.Column("points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("scan_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "workspace_id", name="uq_workspace_members_user_workspace"),
        sa.CheckConstraint("points >= 0", name="ck_workspace_members_points_non_negative"),
        sa.CheckConstraint("scan_count >= 0", name="ck_workspace_members_scan_count_non_negative"),
    )

    # Create devices table
    op.create_table(
        "devices",
        sa.Column("id", sa.String(24), primary_key=True),
        sa.Column("device_id", sa.String(100), nullable=True, unique=True, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", sa.Enum(*DEVICE_TYPES, name="devicetype"), nullable=False, index=True),
        sa.Column(
            "status",
            sa.Enum("ONLINE", "OFFLINE", "ACTIVE", "INACTIVE", name="devicestatus"),
            nullable=False,
            server_default="ACTIVE",
        ),
        sa.Column("workspace_id", sa.String(24), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("metadata", sa.JSON, nullable=False),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_unique_code", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Create activities table (raw log, rows expire after the retention window)
    op.create_table(
        "activities",
        sa.Column("id", sa.String(24), primary_key=True),
        sa.Column("workspace_id", sa.String(24), nullable=False),
        sa.Column("user_id", sa.String(24), nullable=False),
        sa.Column("device_ref_id", sa.String(24), nullable=True),
        sa.Column("device_type", sa.String(50), nullable=True),
        sa.Column("type", sa.Enum(*ACTIVITY_TYPES, name="activitytype"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_activities_workspace_created", "activities", ["workspace_id", "created_at"])
    op.create_index("ix_activities_user_created", "activities", ["user_id", "created_at"])
    op.create_index("ix_activities_expires_at", "activities", ["expires_at"])

    # Create activity_archives table (permanent daily rollups)
    op.create_table(
        "activity_archives",
        sa.Column("id", sa.String(24), primary_key=True),
        sa.Column("workspace_id", sa.String(24), nullable=False, index=True),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("total_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_activities", sa.Integer, nullable=False, server_default="0"),
        sa.Column("active_users_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("timeline", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("workspace_id", "date", name="uq_activity_archives_workspace_date"),
    )
    op.create_index("ix_activity_archives_date", "activity_archives", ["date"])

    # Create notifications table
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(24), primary_key=True),
        sa.Column("workspace_id", sa.String(24), nullable=False, index=True),
        sa.Column(
            "type",
            sa.Enum(
                "DEVICE_ADDED", "DEVICE_REMOVED", "DEVICE_TRANSFERRED", "DEVICE_RECEIVED", "INFO",
                name="notificationtype",
            ),
            nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("metadata", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_index("ix_activity_archives_date", table_name="activity_archives")
    op.drop_table("activity_archives")
    op.drop_index("ix_activities_expires_at", table_name="activities")
    op.drop_index("ix_activities_user_created", table_name="activities")
    op.drop_index("ix_activities_workspace_created", table_name="activities")
    op.drop_table("activities")
    op.drop_table("devices")
    op.drop_table("workspace_members")
    op.drop_table("workspaces")
    op.drop_table("users")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS notificationtype")
    op.execute("DROP TYPE IF EXISTS activitytype")
    op.execute("DROP TYPE IF EXISTS devicestatus")
    op.execute("DROP TYPE IF EXISTS devicetype")
    op.execute("DROP TYPE IF EXISTS memberrole")
    op.execute("DROP TYPE IF EXISTS workspacetype")
