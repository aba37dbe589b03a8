"""Database setup and session management."""

import logging
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def enable_sqlite_foreign_keys(engine) -> None:
    """Register a ``connect`` listener that turns on SQLite foreign keys.

    Posting, tag and upstream-mapping rows rely on ``ON DELETE CASCADE``,
    which SQLite only honours with ``PRAGMA foreign_keys=ON``.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _set_foreign_keys(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@lru_cache
def get_engine():
    """Get or create the database engine (cached)."""
    connect_args = {}
    database_url = settings.DATABASE_URL

    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=False,
    )
    enable_sqlite_foreign_keys(engine)
    return engine


def get_session_local():
    """Get a sessionmaker bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db(engine=None) -> None:
    """Create all ledger tables that do not exist yet."""
    import models  # noqa: F401  (registers mappers on Base.metadata)

    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.debug("Database schema ensured at %s", engine.url)

