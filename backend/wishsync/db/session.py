import asyncio
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from wishsync.core.config import settings
from wishsync.core.logger import get_logger

logger = get_logger("db")

# Seconds a SQLite writer waits for the database lock before failing.
SQLITE_BUSY_TIMEOUT = 15


def build_engine(dsn: str) -> AsyncEngine:
    """Pooled engine for PostgreSQL; lock-tolerant engine with FK checks for SQLite."""
    backend = make_url(dsn).get_backend_name()
    if backend == "postgresql":
        return create_async_engine(
            dsn,
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle,
            pool_timeout=settings.db_pool_timeout,
        )

    sqlite_engine = create_async_engine(dsn, connect_args={"timeout": SQLITE_BUSY_TIMEOUT})

    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


class Base(DeclarativeBase):
    pass


engine = build_engine(settings.postgres_dsn)
async_session_factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

_schema_ready = False
_schema_lock = asyncio.Lock()


async def create_schema(bind: AsyncEngine = engine) -> None:
    from wishsync.models import models as _models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ensure_schema_ready() -> None:
    """Create tables once when the app runs without its startup hook."""
    global _schema_ready
    if _schema_ready:
        return
    async with _schema_lock:
        if not _schema_ready:
            await create_schema()
            logger.info("Schema ready on %s", make_url(settings.postgres_dsn).get_backend_name())
            _schema_ready = True


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    await ensure_schema_ready()
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block in one transaction: commit on success, roll back on any error.

    Reads issued earlier on the session (auth lookups) autobegin a transaction;
    it is committed first so the write block starts on a clean boundary.
    """
    if session.in_transaction():
        await session.commit()
    async with session.begin():
        yield session
