"""
Create every fee ledger table (and the read-only collaborator tables) from the model metadata.

Usage:
  python -m schoolfees.db.init_db
  python -m schoolfees.db.init_db --drop
"""

import argparse
import asyncio

from sqlalchemy.ext.asyncio import AsyncEngine

import schoolfees.auth.models  # noqa: F401  (register users table)
import schoolfees.core.models  # noqa: F401
from schoolfees.db.session import Base, engine


async def init_tables(db_engine: AsyncEngine, drop: bool = False) -> None:
    async with db_engine.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    print("Tables ready: " + ", ".join(sorted(Base.metadata.tables)))


async def main(drop: bool = False) -> None:
    await init_tables(engine, drop=drop)
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create fee ledger tables")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables first")
    args = parser.parse_args()
    asyncio.run(main(drop=args.drop))
