"""
Database session management with SQLAlchemy async
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(url: str = None):
    """Create an async engine for the given URL (defaults to settings)"""
    return create_async_engine(
        url or settings.DATABASE_URL,
        echo=False,
        poolclass=NullPool,
        future=True
    )


def build_session_maker(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )


engine = build_engine()
async_session_maker = build_session_maker(engine)


def dialect_insert(session: AsyncSession, table):
    """
    Return an INSERT construct supporting ON CONFLICT for the session's dialect.

    PostgreSQL is the production backend; SQLite is used by the test suite.
    Both expose ``on_conflict_do_update`` / ``on_conflict_do_nothing``.
    """
    if session.bind.dialect.name == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)
