import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv
from sqlalchemy import MetaData, event, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.sql.expression import Executable

from app.errors import StorageError

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite+aiosqlite:///./todos.db",
)
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "").lower() in ("1", "true", "yes")

# Normalized tables; the flat pre-migration table lives in its own metadata
# (app.models.legacy_todo) because it shares the "todos" name.
metadata = MetaData()


@dataclass(frozen=True)
class ExecuteResult:
    rowcount: int
    lastrowid: int | None


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Connection:
    """
    Single persistent handle to the database.

    Every call runs one statement and commits it; there are no multi-statement
    transactions. Plain strings are treated as textual SQL with named (:param) binds.
    """

    def __init__(self, url: str | None = None, *, echo: bool | None = None) -> None:
        self.url = url or DATABASE_URL
        self.echo = DATABASE_ECHO if echo is None else echo
        self._engine: AsyncEngine | None = None
        self._conn: AsyncConnection | None = None
        # one DBAPI connection is shared, so statements from concurrent callers queue here
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        if self._conn is not None:
            return
        engine = create_async_engine(self.url, future=True, echo=self.echo)
        if engine.dialect.name == "sqlite":
            event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
        try:
            self._conn = await engine.connect()
        except SQLAlchemyError as exc:
            await engine.dispose()
            raise StorageError(
                f"Failed to connect to database: {exc}", operation="connect"
            ) from exc
        self._engine = engine
        logger.info(f"Connected to database at {self.url}")

    async def close(self) -> None:
        if self._conn is None:
            return
        try:
            await self._conn.close()
            await self._engine.dispose()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to close database: {exc}", operation="close") from exc
        finally:
            self._conn = None
            self._engine = None
        logger.info("Database connection closed")

    async def __aenter__(self) -> "Connection":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _require(self) -> AsyncConnection:
        if self._conn is None:
            raise StorageError(
                "Database not connected. Call open() first.", operation="require-connection"
            )
        return self._conn

    async def _run(self, statement: str | Executable, params: dict[str, Any] | None, consume):
        conn = self._require()
        if isinstance(statement, str):
            statement = text(statement)
        async with self._lock:
            try:
                if params is None:
                    result = await conn.execute(statement)
                else:
                    result = await conn.execute(statement, params)
                value = consume(result)
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise
        return value

    async def execute(
        self, statement: str | Executable, params: dict[str, Any] | None = None
    ) -> ExecuteResult:
        return await self._run(
            statement,
            params,
            lambda result: ExecuteResult(result.rowcount, result.lastrowid),
        )

    async def query_one(
        self, statement: str | Executable, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        def first(result):
            row = result.mappings().first()
            return dict(row) if row is not None else None

        return await self._run(statement, params, first)

    async def query_many(
        self, statement: str | Executable, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return await self._run(
            statement, params, lambda result: [dict(row) for row in result.mappings().all()]
        )

    async def _inspect(self, fn):
        conn = self._require()
        async with self._lock:
            try:
                value = await conn.run_sync(lambda sync_conn: fn(inspect(sync_conn)))
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise
        return value

    async def has_table(self, name: str) -> bool:
        return await self._inspect(lambda inspector: inspector.has_table(name))

    async def table_columns(self, name: str) -> list[str]:
        """Column names of a live table, or an empty list when it does not exist."""

        def columns(inspector):
            if not inspector.has_table(name):
                return []
            return [column["name"] for column in inspector.get_columns(name)]

        return await self._inspect(columns)
