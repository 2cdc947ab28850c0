import pytest

from app.database import Connection
from app.migrations import ADD_OWNER_COLUMN, MIGRATIONS, prepare_storage
from app.repositories.todo_repo import TodoRepository
from app.services.todo_list_service import TodoListService
from app.services.user_service import UserService

LEGACY_ONLY = tuple(m for m in MIGRATIONS if m.name == ADD_OWNER_COLUMN)


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'todos.db'}"


@pytest.fixture
async def connection(database_url):
    conn = Connection(database_url)
    await conn.open()
    yield conn
    await conn.close()


@pytest.fixture
async def ready(connection):
    return await prepare_storage(connection)


@pytest.fixture
async def legacy_ready(connection):
    # store that never got past the owner-column step
    return await prepare_storage(connection, LEGACY_ONLY)


@pytest.fixture
def users(ready):
    return UserService(ready)


@pytest.fixture
def lists(ready):
    return TodoListService(ready)


@pytest.fixture
def todos(ready, users, lists):
    return TodoRepository(ready, users, lists)


@pytest.fixture
def legacy_todos(legacy_ready):
    return TodoRepository(legacy_ready)
