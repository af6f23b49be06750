import os
import tempfile
from datetime import datetime, timezone

# settings are read at import time
_scratch = tempfile.mkdtemp(prefix="jobqueue-tests-")
os.environ.setdefault("DB_URL", f"sqlite+aiosqlite:///{os.path.join(_scratch, 'default.db')}")
os.environ["LOG_DIR"] = os.path.join(_scratch, "logs")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from jobqueue.db import database  # noqa: E402
from jobqueue.models import Job, JobLog, Schedule  # noqa: E402,F401
from jobqueue.repositories.job_repository import JobRepository  # noqa: E402


T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"


@pytest_asyncio.fixture
async def session_factory(db_url):
    """A fresh SQLite job store per test, installed as the process-wide database."""
    await database.close_database()
    await database.init_database(db_url, retries=1)
    async with database.engine.begin() as conn:
        await conn.run_sync(database.Base.metadata.create_all)

    yield database.SessionLocal

    await database.close_database()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def repo() -> JobRepository:
    return JobRepository(backoff_base=30, backoff_max=3600)
