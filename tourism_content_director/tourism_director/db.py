"""
Database wiring for the content graph: async engine, session factory, declarative base.

PostgreSQL (asyncpg) in deployment; SQLite (aiosqlite) in tests, where one static
connection keeps the in-memory database alive across sessions.
"""
from collections.abc import AsyncGenerator
from typing import Any, Dict

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from tourism_director.config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.app_env == "local"}
    if database_url.startswith("sqlite"):
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}
    else:
        # Generation runs hold sessions for minutes; drop connections the server closed.
        options["pool_pre_ping"] = True
    return options


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# Background jobs keep using loaded rows after committing each phase.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Localized text maps, categories, tags, photo lists, preferences.
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for locations, experiences, plans, settings and job locks."""


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit on success, roll back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
