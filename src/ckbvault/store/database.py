"""Engine lifecycle for the shared counter store."""

from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ckbvault.config import get_settings
from ckbvault.store.models import Base
from ckbvault.store.repository import CounterStore

# Global engine and store
_engine: Optional[AsyncEngine] = None
_store: Optional[CounterStore] = None


def create_engine_for_url(db_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, normalising plain sqlite URLs.

    In-memory SQLite shares one connection so every session sees the same data.
    """
    if db_url.startswith("sqlite:///") and "aiosqlite" not in db_url:
        db_url = db_url.replace("sqlite:///", "sqlite+aiosqlite:///")

    if db_url.startswith("sqlite") and ":memory:" in db_url:
        return create_async_engine(
            db_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    if db_url.startswith("sqlite+aiosqlite:///"):
        Path(db_url.split(":///", 1)[1]).parent.mkdir(parents=True, exist_ok=True)

    return create_async_engine(db_url, echo=echo)


def get_engine() -> AsyncEngine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine_for_url(
            settings.database_url,
            echo=settings.debug and not settings.is_production,
        )
    return _engine


def get_store() -> CounterStore:
    """Get the process-wide counter store."""
    global _store
    if _store is None:
        session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        _store = CounterStore(session_factory)
    return _store


async def init_db() -> None:
    """Create all tables."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose connections and forget the store."""
    global _engine, _store
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _store = None
