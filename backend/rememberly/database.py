"""
Rememberly Backend — Database Session Management
==================================================

What:  Async SQLAlchemy engine, session factory and declarative base for the
       remote (authenticated) store.
How:   The engine is created on first use from settings.database_url, so
       importing the models or the remote store never opens a connection.
Who:   Used by SQLAlchemyRemoteStore, the health route and Alembic.
When:  Engine created lazily; sessions are created per remote operation.

Connection Pooling Strategy (server databases):
    pool_size / max_overflow from settings, pool_pre_ping to catch stale
    connections, pool_recycle=3600. SQLite URLs (local development, tests)
    keep SQLAlchemy's default pool, which rejects those arguments.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from rememberly.config import settings


class Base(DeclarativeBase):
    """Base class for all ORM models; its metadata is what Alembic tracks."""
    pass


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine with pooling suited to the URL's backend."""
    options = {"echo": settings.log_level == "DEBUG"}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return create_async_engine(url, **options)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the application engine.

    expire_on_commit=False keeps ORM attributes readable after commit, which
    the remote store relies on when converting rows to records.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def dispose_engine() -> None:
    """
    What:  Gracefully closes all connections in the pool.
    When:  Called during application shutdown (lifespan handler).
    """
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
