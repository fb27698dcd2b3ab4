"""Async SQLAlchemy engine and session helpers."""

from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from explorer.config import settings


def _normalize_db_url(url: str) -> str:
    """Select an async-capable driver for bare SQLite/Postgres URLs.

    "sqlite:///..." becomes "sqlite+aiosqlite:///..." and "postgres(ql)://..."
    becomes "postgresql+asyncpg://...". Explicit drivers are respected.
    """
    try:
        u = make_url(url)
        driver = (u.drivername or "").lower()
        if "+" in driver:
            return u.render_as_string(hide_password=False)
        if driver == "sqlite":
            u = u.set(drivername="sqlite+aiosqlite")
        elif driver in ("postgres", "postgresql"):
            u = u.set(drivername="postgresql+asyncpg")
        return u.render_as_string(hide_password=False)
    except Exception:
        # Fallback string-level normalization for odd/partial URLs
        if url.startswith("sqlite://"):
            return "sqlite+aiosqlite://" + url.split("://", 1)[1]
        if url.startswith("postgresql://"):
            return "postgresql+asyncpg://" + url.split("://", 1)[1]
        if url.startswith("postgres://"):
            return "postgresql+asyncpg://" + url.split("://", 1)[1]
        return url


def _ensure_sqlite_parent_dir(u: URL) -> None:
    if not u.drivername.startswith("sqlite"):
        return
    database = u.database or ""
    if database and database != ":memory:":
        Path(database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """SQLite ships with FK enforcement off; turn it on per connection."""
    if not engine.url.drivername.startswith("sqlite"):
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record):  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine for `url` with SQLite conveniences applied."""
    engine = create_async_engine(_normalize_db_url(url), echo=echo, pool_pre_ping=True)
    enable_sqlite_foreign_keys(engine)
    return engine


def load_schema_modules() -> None:
    """Import table modules so SQLModel metadata is fully populated."""
    from explorer.schemas import access, auth, users  # noqa: F401


DATABASE_URL = _normalize_db_url(settings.database_url)

engine = build_engine(DATABASE_URL, echo=settings.sql_echo)
SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with SessionLocal() as session:
        yield session

async def init_db(target: AsyncEngine | None = None):
    """Initialize the database (create tables)."""
    load_schema_modules()
    target = target or engine
    _ensure_sqlite_parent_dir(target.url)

    async with target.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

async def dispose_engine() -> None:
    """Dispose of the async engine and its connection pool."""
    await engine.dispose()

def describe_database_url(url: str) -> str:
    """Return a sanitized, human-readable description of the DB URL for logging.

    Example: "sqlite+aiosqlite:///./data/explorer.db"
    Passwords are never included.
    """
    try:
        u = make_url(url)
        if u.drivername.startswith("sqlite"):
            return f"{u.drivername}:///{u.database or ':memory:'}"
        auth = u.username or "?"
        host = u.host or "?"
        port = f":{u.port}" if u.port else ""
        db = u.database or "?"
        return f"{u.drivername}://{auth}@{host}{port}/{db}"
    except Exception:
        # On parse failure, do not log the raw URL; hint only
        return "<unparseable database URL>"
