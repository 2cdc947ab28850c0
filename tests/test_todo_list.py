import pytest

from app.errors import ConflictError, NotFoundError, ValidationError

pytestmark = pytest.mark.anyio


@pytest.fixture
async def alice(users):
    return await users.get_or_create_user("alice")


@pytest.fixture
async def bob(users):
    return await users.get_or_create_user("bob")


async def test_create_list_trims_name(lists, alice):
    work = await lists.create_list(alice.id, "  Work  ")
    assert work.name == "Work"
    assert work.user_id == alice.id
    assert [l.name for l in await lists.lists_for_user(alice.id)] == ["My Tasks", "Work"]


async def test_duplicate_name_conflicts_per_user_only(lists, alice, bob):
    await lists.create_list(alice.id, "Work")
    with pytest.raises(ConflictError):
        await lists.create_list(alice.id, "Work")
    # case-sensitive exact match
    assert (await lists.create_list(alice.id, "work")).name == "work"
    assert (await lists.create_list(bob.id, "Work")).user_id == bob.id


@pytest.mark.parametrize("name", ["", "   ", "n" * 101])
async def test_invalid_list_names(lists, alice, name):
    with pytest.raises(ValidationError):
        await lists.create_list(alice.id, name)


async def test_create_list_for_missing_user(lists):
    with pytest.raises(NotFoundError):
        await lists.create_list(777, "Groceries")


async def test_last_list_cannot_be_deleted(lists, alice):
    (only,) = await lists.lists_for_user(alice.id)
    with pytest.raises(ConflictError):
        await lists.delete_list(only.id, alice.id)

    second = await lists.create_list(alice.id, "Work")
    await lists.delete_list(only.id, alice.id)
    assert [l.id for l in await lists.lists_for_user(alice.id)] == [second.id]
    with pytest.raises(ConflictError):
        await lists.delete_list(second.id, alice.id)


async def test_either_list_can_go_once_there_are_two(lists, alice):
    (default,) = await lists.lists_for_user(alice.id)
    second = await lists.create_list(alice.id, "Work")
    await lists.delete_list(second.id)
    assert [l.id for l in await lists.lists_for_user(alice.id)] == [default.id]


async def test_deleting_a_list_cascades_to_its_todos(lists, todos, connection, alice):
    work = await lists.create_list(alice.id, "Work")
    await todos.create_todo_in_list(work.id, alice.id, "Write report")
    await lists.delete_list(work.id, alice.id)
    row = await connection.query_one(
        "SELECT COUNT(*) AS count FROM todos WHERE list_id = :id", {"id": work.id}
    )
    assert row["count"] == 0


async def test_deleting_a_user_cascades(lists, todos, connection, alice):
    await todos.create_todo_for_owner("alice", "Buy milk")
    await connection.execute("DELETE FROM users WHERE id = :id", {"id": alice.id})
    assert await lists.lists_for_user(alice.id) == []
    row = await connection.query_one("SELECT COUNT(*) AS count FROM todos")
    assert row["count"] == 0


async def test_rename_list(lists, alice):
    work = await lists.create_list(alice.id, "Work")
    renamed = await lists.rename_list(work.id, " Office ", alice.id)
    assert renamed.name == "Office"
    assert renamed.id == work.id

    same = await lists.rename_list(work.id, "Office", alice.id)
    assert same.name == "Office"

    with pytest.raises(ConflictError):
        await lists.rename_list(work.id, "My Tasks", alice.id)


async def test_other_users_list_is_not_found(lists, alice, bob):
    work = await lists.create_list(alice.id, "Work")
    with pytest.raises(NotFoundError):
        await lists.rename_list(work.id, "Mine now", bob.id)
    with pytest.raises(NotFoundError):
        await lists.delete_list(work.id, bob.id)
    assert await lists.get_list(work.id, bob.id) is None
    assert not await lists.owns_list(work.id, bob.id)
    assert (await lists.get_list(work.id, alice.id)).name == "Work"
    assert await lists.owns_list(work.id, alice.id)


async def test_missing_list(lists, alice):
    with pytest.raises(NotFoundError):
        await lists.delete_list(12345, alice.id)
    assert await lists.get_list(12345) is None


async def test_todo_counts(lists, todos, alice):
    work = await lists.create_list(alice.id, "Work")
    await todos.create_todo_in_list(work.id, alice.id, "One")
    await todos.create_todo_in_list(work.id, alice.id, "Two")
    counted = await lists.lists_for_user(alice.id, include_todo_count=True)
    assert [(l.name, l.todo_count) for l in counted] == [("My Tasks", 0), ("Work", 2)]
