"""
Script to create all database tables.

This script creates all tables defined in the models for DATABASE_URL.
The app also creates missing tables on startup.
"""
import asyncio

from flux.config import settings
from flux.database import create_all_tables, create_engine


async def main():
    """Main entry point."""
    print(f"Creating database tables for {settings.DATABASE_URL}...")
    engine = create_engine(settings.DATABASE_URL)
    try:
        await create_all_tables(engine)
    finally:
        await engine.dispose()
    print("All tables created successfully!")


if __name__ == "__main__":
    asyncio.run(main())
