#!/usr/bin/env python3
"""Seed test data for load testing.

Creates:
- One organization workspace and its owner
- Scanning members with bearer tokens
- One smart bin per member, so concurrent scanners never share a replay counter

Writes the ids and tokens the locust scenarios need to seed.json next to
this file. Run it BEFORE load tests.
"""

import asyncio
import json
import os
from datetime import timedelta
from pathlib import Path

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from harmony.core.config import get_settings
from harmony.core.security import create_access_token
from harmony.models.base import Base
from harmony.models.device import Device, DeviceType, DeviceStatus
from harmony.models.user import User
from harmony.models.workspace import Workspace, WorkspaceType, WorkspaceMember, MemberRole

MEMBER_COUNT = int(os.getenv("LOADTEST_MEMBERS", "200"))
TOKEN_TTL = timedelta(hours=12)
SEED_FILE = Path(__file__).parent / "seed.json"


async def create_workspace(session: AsyncSession) -> tuple[Workspace, User]:
    """Create the load test workspace and its owner."""
    owner = User(email="owner@loadtest.harmony.local", name="Load Test Owner")
    session.add(owner)
    await session.flush()

    workspace = Workspace(
        name="Load Test Campus",
        type=WorkspaceType.ORGANIZATION,
        description="Created by loadtest/seed_data.py",
        owner_id=owner.id,
    )
    session.add(workspace)
    await session.flush()

    session.add(WorkspaceMember(workspace_id=workspace.id, user_id=owner.id, role=MemberRole.OWNER))
    return workspace, owner


async def create_scanners(session: AsyncSession, workspace: Workspace) -> list[dict]:
    """Create members, each paired with their own device."""
    print(f"Creating {MEMBER_COUNT} members and devices...")
    scanners = []
    for i in range(1, MEMBER_COUNT + 1):
        user = User(email=f"scanner{i}@loadtest.harmony.local", name=f"Scanner {i}")
        session.add(user)
        await session.flush()

        session.add(WorkspaceMember(workspace_id=workspace.id, user_id=user.id))
        device = Device(
            device_id=f"LOADTEST-BIN-{i:05d}",
            name=f"Load Bin {i}",
            type=DeviceType.SMART_BIN,
            status=DeviceStatus.ACTIVE,
            workspace_id=workspace.id,
            properties={"capacity": 1000},
        )
        session.add(device)

        scanners.append(
            {
                "userId": user.id,
                "deviceId": device.device_id,
                "token": create_access_token(user.id, expires_delta=TOKEN_TTL),
            }
        )
    return scanners


async def main():
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        workspace, owner = await create_workspace(session)
        scanners = await create_scanners(session, workspace)
        await session.commit()

    await engine.dispose()

    SEED_FILE.write_text(
        json.dumps(
            {
                "workspaceId": workspace.id,
                "ownerToken": create_access_token(owner.id, expires_delta=TOKEN_TTL),
                "scanners": scanners,
            },
            indent=2,
        )
    )
    print(f"Seeded workspace {workspace.id}; wrote {SEED_FILE}")


if __name__ == "__main__":
    asyncio.run(main())
