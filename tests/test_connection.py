import pytest
from sqlalchemy.exc import IntegrityError

from app.database import Connection
from app.errors import StorageError

pytestmark = pytest.mark.anyio


async def test_execute_and_query(connection):
    await connection.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT UNIQUE)")
    result = await connection.execute(
        "INSERT INTO notes (body) VALUES (:body)", {"body": "first"}
    )
    assert result.lastrowid == 1
    assert result.rowcount == 1
    await connection.execute("INSERT INTO notes (body) VALUES (:body)", {"body": "second"})

    row = await connection.query_one("SELECT body FROM notes WHERE id = :id", {"id": 1})
    assert row == {"body": "first"}
    assert await connection.query_one("SELECT body FROM notes WHERE id = 99") is None

    rows = await connection.query_many("SELECT id, body FROM notes ORDER BY id")
    assert [r["body"] for r in rows] == ["first", "second"]


async def test_failed_statement_is_rolled_back(connection):
    await connection.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT UNIQUE)")
    await connection.execute("INSERT INTO notes (body) VALUES ('same')")
    with pytest.raises(IntegrityError):
        await connection.execute("INSERT INTO notes (body) VALUES ('same')")
    # connection stays usable
    rows = await connection.query_many("SELECT body FROM notes")
    assert rows == [{"body": "same"}]


async def test_introspection(connection):
    assert not await connection.has_table("notes")
    assert await connection.table_columns("notes") == []
    await connection.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT)")
    assert await connection.has_table("notes")
    assert await connection.table_columns("notes") == ["id", "body"]


async def test_foreign_keys_are_enforced(connection):
    row = await connection.query_one("PRAGMA foreign_keys")
    assert list(row.values()) == [1]


async def test_closed_connection_raises(database_url):
    conn = Connection(database_url)
    with pytest.raises(StorageError):
        await conn.query_one("SELECT 1")

    async with conn:
        assert conn.is_open
        assert await conn.query_one("SELECT 1 AS one") == {"one": 1}
    assert not conn.is_open
