"""Pytest configuration and fixtures for Harmony tests."""

import os

# Settings are read at import time; configure before importing harmony
os.environ.setdefault("QR_ENCRYPTION_KEY", "harmony-test-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ARCHIVE_SCHEDULER_ENABLED", "false")
os.environ.setdefault("METRICS_ENABLED", "false")
os.environ.setdefault("IOT_API_KEY", "firmware-test-key")

from datetime import datetime, timedelta
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from harmony.main import app
from harmony.models.base import Base, utcnow
# Import all models to ensure they're registered with Base.metadata
from harmony.models import (
    User, Workspace, WorkspaceType, WorkspaceMember, MemberRole, MemberPermission,
    Device, DeviceType, DeviceStatus, Activity, ActivityType,
)
from harmony.core.config import settings
from harmony.core.deps import get_db
from harmony.core.security import create_access_token
from harmony.services.qr_codec import QRCodec, QRCodecConfig

# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine with shared connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with database override."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def codec() -> QRCodec:
    """Codec sharing the configured key, as device firmware would."""
    return QRCodec(QRCodecConfig.from_settings(settings))


def auth_headers(user: User) -> dict[str, str]:
    """Bearer header for a user."""
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


async def _create_user(db: AsyncSession, email: str, name: str, is_admin: bool = False) -> User:
    user = User(email=email, name=name, is_active=True, is_admin=is_admin)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def add_member(
    db: AsyncSession,
    workspace: Workspace,
    user: User,
    role: MemberRole = MemberRole.REGULAR_USER,
    permissions: list[MemberPermission] | None = None,
    joined_at: datetime | None = None,
) -> WorkspaceMember:
    """Add a membership row."""
    membership = WorkspaceMember(
        workspace_id=workspace.id,
        user_id=user.id,
        role=role,
        permissions=[p.value for p in permissions or []],
        joined_at=joined_at or utcnow() - timedelta(days=60),
    )
    db.add(membership)
    await db.commit()
    await db.refresh(membership)
    return membership


@pytest.fixture
async def owner(db_session: AsyncSession) -> User:
    """Workspace owner."""
    return await _create_user(db_session, "owner@example.com", "Olive Owner")


@pytest.fixture
async def member(db_session: AsyncSession) -> User:
    """Regular workspace member."""
    return await _create_user(db_session, "member@example.com", "Max Member")


@pytest.fixture
async def outsider(db_session: AsyncSession) -> User:
    """User with no memberships."""
    return await _create_user(db_session, "outsider@example.com", "Otto Outsider")


@pytest.fixture
async def admin_user(db_session: AsyncSession) -> User:
    """Platform administrator."""
    return await _create_user(db_session, "admin@example.com", "Ada Admin", is_admin=True)


@pytest.fixture
async def workspace(db_session: AsyncSession, owner: User, member: User) -> Workspace:
    """Workspace owned by ``owner`` with ``member`` as a regular user."""
    ws = Workspace(name="Green Campus", type=WorkspaceType.ORGANIZATION, owner_id=owner.id)
    db_session.add(ws)
    await db_session.commit()
    await db_session.refresh(ws)

    await add_member(db_session, ws, owner, role=MemberRole.OWNER)
    await add_member(db_session, ws, member)
    return ws


@pytest.fixture
async def other_workspace(db_session: AsyncSession, owner: User) -> Workspace:
    """Second workspace with the same owner and no other members."""
    ws = Workspace(name="Home", type=WorkspaceType.PRIVATE, owner_id=owner.id)
    db_session.add(ws)
    await db_session.commit()
    await db_session.refresh(ws)

    await add_member(db_session, ws, owner, role=MemberRole.OWNER)
    return ws


@pytest.fixture
async def device(db_session: AsyncSession, workspace: Workspace) -> Device:
    """Smart bin registered in ``workspace``."""
    bin_device = Device(
        device_id="BIN-001",
        name="Lobby Bin",
        type=DeviceType.SMART_BIN,
        status=DeviceStatus.ACTIVE,
        workspace_id=workspace.id,
        properties={"capacity": 1000},
        last_unique_code=0,
    )
    db_session.add(bin_device)
    await db_session.commit()
    await db_session.refresh(bin_device)
    return bin_device


@pytest.fixture
def make_activity(db_session: AsyncSession) -> Callable:
    """Factory inserting raw activities at arbitrary times."""

    async def _make(
        workspace_id: str,
        user_id: str,
        created_at: datetime,
        type: ActivityType = ActivityType.SCAN,
        points: int = 10,
        device_type: str | None = "SMART_BIN",
        expires_at: datetime | None = None,
    ) -> Activity:
        activity = Activity(
            workspace_id=workspace_id,
            user_id=user_id,
            device_type=device_type,
            type=type,
            title="Waste Scanned" if type == ActivityType.SCAN else type.value.title(),
            description="Lobby Bin • Smart Bin",
            points=points,
            created_at=created_at,
            expires_at=expires_at or created_at + timedelta(days=settings.activity_retention_days),
        )
        db_session.add(activity)
        await db_session.commit()
        return activity

    return _make
