"""Database engine, session dependency and table creation using SQLModel."""

import logging
import os
import sqlite3
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

logger = logging.getLogger(__name__)

DB_PATH = Path(__file__).parent / "klusjes.db"
DATABASE_URL = os.getenv("KLUSJES_DATABASE_URL", f"sqlite:///{DB_PATH}")


def _create_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # The change feed reads from worker threads.
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(url, echo=False, pool_pre_ping=True)


engine = _create_engine(DATABASE_URL)


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection."""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_and_tables() -> None:
    """Create all tables from SQLModel metadata."""
    # Import registers the tables on SQLModel.metadata.
    from klusjes_api import models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database ready at %s", engine.url)


def get_engine() -> Engine:
    """Return the engine; overridden in tests with an in-memory database."""
    return engine


def get_session():
    """Yield a database session for FastAPI dependency injection."""
    with Session(engine) as session:
        yield session
