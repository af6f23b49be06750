import asyncio
from typing import Any, AsyncGenerator, Optional
from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from jobqueue.core.config import settings
from jobqueue.core.exceptions import StoreUnavailable
from jobqueue.core.logger import info, warning
from jobqueue.core.setup_logger import db_logger


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # the database write lock serialises claims; wait on it instead of failing fast
        return {"connect_args": {"timeout": 20}}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
    }


def _set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
    # transactions are started explicitly in _begin_immediate
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=20000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_immediate(conn) -> None:
    # take the write lock up front: a read transaction upgraded to a write
    # fails with SQLITE_BUSY instead of waiting when another writer got there first
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str) -> AsyncEngine:
    engine = create_async_engine(
        url,
        echo=settings.DEBUG,  # Show SQL queries in debug mode
        **_engine_kwargs(url),
    )
    if url.startswith("sqlite"):
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragma)
        event.listen(engine.sync_engine, "begin", _begin_immediate)
    return engine


async def connect_with_retry(url: str, retries=5, delay=3) -> AsyncEngine:
    """Create async engine with retry logic."""
    for attempt in range(retries):
        engine = build_engine(url)
        try:
            async with engine.begin() as connection:
                await connection.execute(text("SELECT 1"))
            return engine
        except (SQLAlchemyError, OSError) as e:
            await engine.dispose()
            if attempt == retries - 1:
                raise StoreUnavailable(f"Could not connect to job store: {e}") from e
            warning(db_logger, f"Database connection attempt {attempt + 1} failed, retrying in {delay} seconds...",
                    context={"error": str(e)})
            await asyncio.sleep(delay)


engine: Optional[AsyncEngine] = None
SessionLocal: Optional[async_sessionmaker] = None
Base = declarative_base()


async def init_database(url: Optional[str] = None, retries: int = 5, delay: float = 3):
    """Initialize database connection. `url` overrides the configured DB_URL."""
    global engine, SessionLocal

    if engine is None:
        engine = await connect_with_retry(url or settings.async_database_url, retries=retries, delay=delay)
        SessionLocal = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        info(db_logger, "Async database connection initialized")


async def close_database():
    """Close database connections."""
    global engine, SessionLocal
    if engine:
        await engine.dispose()
        engine = None
        SessionLocal = None
        info(db_logger, "Database connections closed")


async def get_session_factory() -> async_sessionmaker:
    if SessionLocal is None:
        await init_database()
    return SessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for async database sessions."""
    session_factory = await get_session_factory()

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
