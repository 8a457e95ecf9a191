#!/usr/bin/env python3
"""Initialize a platform admin for Harmony.

Admins can trigger archive jobs and read archive stats. Harmony does not
issue credentials itself, so this script also prints a bearer token for
the admin user.

Run this script inside the backend container:
    docker exec -it harmony-backend python scripts/init_admin.py
"""

import asyncio
import os
import sys
from datetime import timedelta
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from harmony.core.config import settings
from harmony.core.security import create_access_token
from harmony.models.user import User


# Default admin identity - override with environment variables
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@harmony.local")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Platform Administrator")
TOKEN_TTL_HOURS = int(os.getenv("ADMIN_TOKEN_TTL_HOURS", "24"))


async def init_admin():
    """Create or promote the admin user and print a token."""
    print("Connecting to database...")

    engine = create_async_engine(settings.database_url, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as db:
        result = await db.execute(select(User).where(User.email == ADMIN_EMAIL))
        user = result.scalar_one_or_none()

        if user:
            print(f"User '{ADMIN_EMAIL}' already exists")
            user.is_active = True
            user.is_admin = True
            await db.commit()
            print(f"User '{ADMIN_EMAIL}' reactivated and granted admin")
        else:
            user = User(
                email=ADMIN_EMAIL,
                name=ADMIN_NAME,
                is_active=True,
                is_admin=True,
            )
            db.add(user)
            await db.commit()
            print(f"Admin user '{ADMIN_EMAIL}' created successfully")

        token = create_access_token(user.id, expires_delta=timedelta(hours=TOKEN_TTL_HOURS))
        print(f"\nEmail: {ADMIN_EMAIL}")
        print(f"User ID: {user.id}")
        print(f"Token (valid {TOKEN_TTL_HOURS}h): {token}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_admin())
