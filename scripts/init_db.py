"""Script to create the reminder tables without running migrations.

Useful for local SQLite or throwaway databases; production uses Alembic.
"""

import asyncio

from reminder_service.database import build_engine
from reminder_service.models import metadata


async def init_db() -> None:
    """Create all reminder tables that do not exist yet."""
    engine = build_engine()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
    finally:
        await engine.dispose()

    print("✓ Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
