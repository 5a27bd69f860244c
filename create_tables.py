"""
Script to create all database tables.

This script creates all tables defined in the models.
Run this after starting PostgreSQL with Docker.
"""
import argparse
import asyncio
from leadflow.database import engine
from leadflow.logging_config import get_logger
from leadflow.models import Base

log = get_logger(component="create_tables")


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        # leadflow.models registers every table on Base.metadata
        await conn.run_sync(Base.metadata.create_all)
    log.info("tables_created", tables=sorted(Base.metadata.tables))


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    log.info("tables_dropped")


async def main(drop: bool = False):
    """Main entry point."""
    if drop:
        await drop_all_tables()
    await create_all_tables()
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create LeadFlow database tables")
    parser.add_argument("--drop", action="store_true", help="drop existing tables first")
    args = parser.parse_args()
    asyncio.run(main(drop=args.drop))
