"""Core async database components using SQLAlchemy and SQLModel."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import logging
from pathlib import Path
import sqlite3
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import CursorResult, Result
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import ConnectionPoolEntry
from sqlmodel import SQLModel

from ..exceptions import DatabaseOperationError, QueueBackendError

# Imported for their side effect of registering tables on SQLModel.metadata.
from .types import Feed, RefreshJob  # noqa: F401  # pyright: ignore[reportUnusedImport]

logger = logging.getLogger(__name__)

DB_FILE_NAME = "feedrefresh.db"


class SqlalchemyCore:
    """Core wrapper for SQLAlchemy async operations against SQLite.

    Attributes:
        engine: The async engine.
        async_session_maker: Factory for sessions bound to ``engine``.
    """

    def __init__(self, db_dir: Path) -> None:
        self.db_path = db_dir / DB_FILE_NAME
        db_url = f"sqlite+aiosqlite:///{self.db_path.resolve()}"
        self.engine: AsyncEngine = create_async_engine(
            db_url,
            echo=logger.isEnabledFor(logging.DEBUG),
            pool_size=1,  # SQLite only supports a single writer anyway
            connect_args={
                "check_same_thread": False,
                "timeout": 60.0,
            },
        )
        event.listen(self.engine.sync_engine, "connect", _set_sqlite_pragmas)
        self.async_session_maker = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        """Create all tables and indexes that do not exist yet.

        Raises:
            QueueBackendError: If the database cannot be opened or the schema
                cannot be created.
        """
        logger.debug("Creating database schema.", extra={"db_path": str(self.db_path)})
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise QueueBackendError(
                "Failed to initialize database schema.", backend="sqlite"
            ) from e

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """Provide a transactional session.

        Yields:
            An active, transactional AsyncSession.
        """
        async with self.async_session_maker() as session:
            yield session

    async def close(self) -> None:
        """Close the database engine and all its connections."""
        await self.engine.dispose()

    @staticmethod
    def rowcount(result: Result[Any]) -> int:
        """Return the number of rows affected by a DML statement.

        Raises:
            DatabaseOperationError: If the result is not backed by a cursor.
        """
        if isinstance(result, CursorResult):
            return result.rowcount
        raise DatabaseOperationError(
            f"Expected cursor-backed SQLAlchemy result, got {type(result).__name__}.",
        )


def _set_sqlite_pragmas(
    dbapi_connection: sqlite3.Connection, _connection_record: ConnectionPoolEntry
) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL;")
    cursor.execute("PRAGMA synchronous = NORMAL;")
    cursor.close()
