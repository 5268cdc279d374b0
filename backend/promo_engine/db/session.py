from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from promo_engine.core.config import settings


def configure_sqlite_engine(engine: AsyncEngine) -> AsyncEngine:
    """Open every SQLite transaction with BEGIN IMMEDIATE.

    The driver's own implicit BEGIN is disabled so that writers are serialized
    at transaction start, the SQLite counterpart of a row lock.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(database_url: str) -> AsyncEngine:
    is_sqlite = database_url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    engine = create_async_engine(database_url, future=True, echo=False, connect_args=connect_args)
    if is_sqlite:
        configure_sqlite_engine(engine)
    return engine


engine = build_engine(settings.database_url)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False, class_=AsyncSession)


async def get_session() -> AsyncSession:
    """FastAPI dependency to provide a database session."""
    async with SessionLocal() as session:
        yield session
