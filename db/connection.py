import logging

from decouple import config
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .base import Base

logger = logging.getLogger(__name__)


def make_engine(db_url: str = None) -> Engine:
    """Engine for DATABASE_URL (or the given url)."""
    db_url = db_url or config("DATABASE_URL")
    if db_url.startswith("sqlite"):
        # In-memory databases live in a single connection shared by all threads
        in_memory = db_url in ("sqlite://", "sqlite:///:memory:")
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if in_memory else None,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        db_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=3600
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        bind=engine
    )


def create_tables(engine: Engine) -> None:
    # Registers the mapped classes on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(engine)
    logger.info("Database tables ensured")
