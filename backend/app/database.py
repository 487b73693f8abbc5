"""Async SQLAlchemy engine, session factory and declarative base."""

from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool, StaticPool

from app.config import settings


def _is_memory_sqlite(url) -> bool:
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


def _get_engine_kwargs(database_url: Optional[str] = None):
    """Return dialect-specific engine options for SQLite vs PostgreSQL.

    In-memory SQLite shares one connection (StaticPool).  File-backed SQLite
    opens a connection per session so each session keeps its own transaction.
    """
    url = make_url(database_url or settings.database_url)
    kwargs = {"echo": settings.debug}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        kwargs["poolclass"] = StaticPool if _is_memory_sqlite(url) else NullPool
    return kwargs


engine = create_async_engine(
    settings.database_url,
    **_get_engine_kwargs(),
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
