"""
Create the job queue schema.
Run once per database: python -m jobqueue.db.create_tables  (or: jobqueue init-db)
"""
import asyncio
from typing import Optional

from jobqueue.db import database
from jobqueue.core.logger import info
from jobqueue.core.setup_logger import db_logger

# registers the models on Base.metadata
from jobqueue.models import Job, JobLog, Schedule  # noqa: F401


async def create_tables(url: Optional[str] = None):
    """Create all database tables. Existing tables are left alone."""
    await database.init_database(url)

    info(db_logger, "Creating database tables...")
    async with database.engine.begin() as conn:
        await conn.run_sync(database.Base.metadata.create_all)
    info(db_logger, "Database tables created successfully!")


if __name__ == "__main__":
    asyncio.run(create_tables())
