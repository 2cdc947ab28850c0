import pytest

from app.errors import NotFoundError, SchemaShapeError, ValidationError
from app.schemas.todo import LegacyTodo

pytestmark = pytest.mark.anyio


async def test_legacy_repository_uses_owner_column(legacy_todos, connection):
    assert not legacy_todos.schema_is_normalized()
    todo = await legacy_todos.create_todo_for_owner("alice", "  Buy milk  ")
    assert isinstance(todo, LegacyTodo)
    assert todo.text == "Buy milk"

    row = await connection.query_one(
        "SELECT username FROM todos WHERE id = :id", {"id": todo.id}
    )
    assert row["username"] == "alice"
    # no users table is involved
    assert not await connection.has_table("users")


async def test_legacy_listing_is_per_owner_and_ordered(legacy_todos):
    first = await legacy_todos.create_todo_for_owner("alice", "first")
    second = await legacy_todos.create_todo_for_owner("alice", "second")
    await legacy_todos.create_todo_for_owner("bob", "bob's")
    await legacy_todos.set_completion("alice", second.id, True)

    listed = await legacy_todos.list_todos_for_owner("alice")
    assert [t.id for t in listed] == [first.id, second.id]
    assert [t.completed for t in listed] == [False, True]


async def test_legacy_other_owner_gets_not_found(legacy_todos):
    todo = await legacy_todos.create_todo_for_owner("alice", "private")
    with pytest.raises(NotFoundError):
        await legacy_todos.set_completion("bob", todo.id, True)
    with pytest.raises(NotFoundError):
        await legacy_todos.delete("bob", todo.id)
    (unchanged,) = await legacy_todos.list_todos_for_owner("alice")
    assert unchanged.completed is False


async def test_legacy_update_and_delete(legacy_todos):
    todo = await legacy_todos.create_todo_for_owner("alice", "draft")
    edited = await legacy_todos.update_text("alice", todo.id, "final")
    assert edited.text == "final"
    await legacy_todos.delete("alice", todo.id)
    assert await legacy_todos.list_todos_for_owner("alice") == []
    with pytest.raises(NotFoundError):
        await legacy_todos.delete("alice", todo.id)


async def test_legacy_validation(legacy_todos):
    with pytest.raises(ValidationError):
        await legacy_todos.create_todo_for_owner("alice", "   ")
    with pytest.raises(ValidationError):
        await legacy_todos.create_todo_for_owner("alice", "a" * 501)


async def test_list_operations_need_normalized_store(legacy_todos):
    with pytest.raises(SchemaShapeError):
        await legacy_todos.move_to_list(1, 2, 3)
    with pytest.raises(SchemaShapeError):
        await legacy_todos.create_todo_in_list(1, 1, "x")
