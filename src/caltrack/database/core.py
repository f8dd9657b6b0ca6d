"""
Database core functionality for async SQLAlchemy over SQLite
"""

from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

# Create Base class for models
Base = declarative_base()


def create_file_engine(database_path: Path) -> AsyncEngine:
    """Engine over a durable SQLite file; every commit is synced to disk."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{database_path}",
        echo=False,
        connect_args={"timeout": 30}
    )

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=FULL")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.close()

    return engine


def create_memory_engine() -> AsyncEngine:
    """Engine over one shared in-memory SQLite connection.

    The connection is opened without the same-thread check so snapshot
    backups can read from it on another aiosqlite worker thread.
    """
    return create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
