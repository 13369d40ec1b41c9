import asyncio

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData, event, text
from typing import AsyncGenerator, Optional

from enrollsync.core.config import settings


class Base(DeclarativeBase):
    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s"
        }
    )


def _configure_sqlite(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy own SQLite transactions.

    pysqlite/aiosqlite issue their own BEGIN lazily, which breaks SAVEPOINT
    handling; the sync engine relies on savepoints for row and page
    isolation. Foreign keys are also off by default in SQLite.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_database_engine(url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    """Create an async engine for either side of the sync."""
    engine = create_async_engine(url, echo=echo, future=True, **kwargs)
    if engine.dialect.name == "sqlite":
        _configure_sqlite(engine)
    return engine


# Local (offline-capable) database
engine = create_database_engine(
    settings.LOCAL_DATABASE_URL,
    echo=settings.DATABASE_ECHO
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: Optional[AsyncEngine] = None):
    # Register every model on Base.metadata before create_all
    import enrollsync.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def probe_database(engine: AsyncEngine, timeout_seconds: float) -> None:
    """
    Run ``SELECT 1`` against ``engine``.

    Raises ``asyncio.TimeoutError`` when no answer arrives within
    ``timeout_seconds``, or whatever the driver raised.
    """

    async def _probe():
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    await asyncio.wait_for(_probe(), timeout=timeout_seconds)
