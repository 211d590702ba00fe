from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from pathlib import Path
import logging

from config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


# ==================== DATABASE SETUP ====================

_SQLITE_FILE_PREFIX = "sqlite+aiosqlite:///"

_engine_kw: dict = {"echo": False}
if "sqlite" in settings.DATABASE_URL:
    _engine_kw["connect_args"] = {"timeout": 30}  # Wait up to 30s when DB is locked

async_engine = create_async_engine(settings.DATABASE_URL, **_engine_kw)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite for concurrent reads while identities are written."""
    if "sqlite" not in settings.DATABASE_URL:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


# Apply pragmas on each new SQLite connection
event.listens_for(async_engine.sync_engine, "connect")(_set_sqlite_pragma)

AsyncSessionLocal = sessionmaker(
    async_engine, class_=AsyncSession, expire_on_commit=False
)


def _ensure_sqlite_directory() -> None:
    url = settings.DATABASE_URL
    if not url.startswith(_SQLITE_FILE_PREFIX):
        return
    path_part = url[len(_SQLITE_FILE_PREFIX) :]
    if not path_part or path_part == ":memory:":
        return
    Path(path_part).parent.mkdir(parents=True, exist_ok=True)


async def init_database():
    """Create tables for every registered model."""
    # Registers CachedIdentity on Base.metadata
    import services.identity_cache  # noqa: F401

    _ensure_sqlite_directory()
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized (%s tables)", len(Base.metadata.tables))
