"""
Create the QueueUp workflow tables.

Builds every table registered on ``Base.metadata`` (jobs, bids, schedule
proposals, change orders and their line items, job timeline) against
``DATABASE_URL``. Tables that already exist are left alone, so running it
twice is harmless.

Usage::

    python -m scripts.create_schema
"""

from __future__ import annotations

import asyncio
import os
import sys

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

# Ensure the project root is on sys.path so ``queueup`` is importable
_root_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _root_dir not in sys.path:
    sys.path.insert(0, _root_dir)

from queueup.core.config import settings  # noqa: E402
from queueup.models import Base  # noqa: E402


async def create_schema(engine: AsyncEngine) -> list[str]:
    """Create missing tables and return the names that were created."""
    async with engine.begin() as conn:
        existing = set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))
        await conn.run_sync(Base.metadata.create_all)

    return [name for name in Base.metadata.tables if name not in existing]


async def main() -> None:
    engine = create_async_engine(settings.database_url)
    try:
        created = await create_schema(engine)
    finally:
        await engine.dispose()

    if created:
        for name in created:
            print(f"  CREATE {name}")
    print(f"\nDone. Created: {len(created)}, Total: {len(Base.metadata.tables)}")


if __name__ == "__main__":
    asyncio.run(main())
