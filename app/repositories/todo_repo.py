import logging

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError

from app.errors import (
    NotFoundError,
    SchemaShapeError,
    StorageError,
    ValidationError,
    ownership_error,
    storage_operation,
)
from app.migrations import SchemaShape, StorageReady
from app.models.legacy_todo import legacy_todos
from app.models.todo import todos
from app.models.todo_list import DEFAULT_LIST_NAME, todo_lists
from app.repositories.todo_list_repo import TodoListRepository
from app.schemas.todo import LegacyTodo, Todo
from app.schemas.todo_list import TodoList
from app.services.todo_list_service import TodoListService
from app.services.user_service import UserService
from app.validators import validate_completed, validate_id, validate_todo_text

logger = logging.getLogger(__name__)

_todo_columns = (todos.c.id, todos.c.text, todos.c.completed, todos.c.list_id, todos.c.created_at)
_legacy_columns = (
    legacy_todos.c.id,
    legacy_todos.c.text,
    legacy_todos.c.completed,
    legacy_todos.c.created_at,
    legacy_todos.c.updated_at,
)
_todos_with_lists = todos.join(todo_lists, todos.c.list_id == todo_lists.c.id)


class TodoRepository:
    """
    Todo CRUD that works against either schema shape.

    The shape comes from the StorageReady token and is fixed for the lifetime of
    the repository: legacy stores are queried through the owner column of the
    flat table, normalized stores through the owner's lists.
    """

    def __init__(
        self,
        ready: StorageReady,
        users: UserService | None = None,
        lists: TodoListService | None = None,
    ):
        self.db = ready.connection
        self.shape = ready.shape
        if self.shape is SchemaShape.NORMALIZED:
            self.users = users or UserService(ready)
            self.lists = lists or TodoListService(ready)
            self.list_repo = TodoListRepository(self.db)
        else:
            self.users = None
            self.lists = None
            self.list_repo = None

    def schema_is_normalized(self) -> bool:
        return self.shape is SchemaShape.NORMALIZED

    def _require_normalized(self, operation: str) -> None:
        if not self.schema_is_normalized():
            raise SchemaShapeError(
                f"Cannot {operation}: the store has not been normalized yet", operation=operation
            )

    # ------------------------ Read ------------------------

    async def default_list_for(self, user_id: int) -> TodoList:
        """The user's "My Tasks" list, else their oldest list, else a new "My Tasks"."""
        self._require_normalized("resolve default list")
        async with storage_operation("resolve default list"):
            todo_list = await self.list_repo.preferred_for_user(user_id, DEFAULT_LIST_NAME)
        if todo_list is None:
            return await self.users.create_default_list(user_id)
        return todo_list

    async def list_todos_for_owner(self, owner_name: str) -> list[Todo] | list[LegacyTodo]:
        """Incomplete todos first, then newest first."""
        if self.schema_is_normalized():
            user = await self.users.get_or_create_user(owner_name)
            todo_list = await self.default_list_for(user.id)
            return await self._todos_in_list(todo_list.id)
        async with storage_operation("retrieve todos"):
            rows = await self.db.query_many(
                select(*_legacy_columns)
                .where(legacy_todos.c.username == owner_name)
                .order_by(
                    legacy_todos.c.completed.asc(),
                    legacy_todos.c.created_at.desc(),
                    legacy_todos.c.id.desc(),
                )
            )
        return [LegacyTodo.model_validate(row) for row in rows]

    async def _todos_in_list(self, list_id: int) -> list[Todo]:
        async with storage_operation("retrieve todos"):
            rows = await self.db.query_many(
                select(*_todo_columns)
                .where(todos.c.list_id == list_id)
                .order_by(todos.c.completed.asc(), todos.c.created_at.desc(), todos.c.id.desc())
            )
        return [Todo.model_validate(row) for row in rows]

    async def list_todos_in_list(self, list_id: int, owner_id: int) -> list[Todo]:
        self._require_normalized("list todos of a list")
        if not await self.lists.owns_list(list_id, owner_id):
            raise ownership_error("List", list_id)
        return await self._todos_in_list(list_id)

    async def _fetch(self, todo_id: int) -> Todo | None:
        row = await self.db.query_one(select(*_todo_columns).where(todos.c.id == todo_id))
        return Todo.model_validate(row) if row else None

    async def _fetch_legacy(self, todo_id: int, owner_name: str) -> LegacyTodo | None:
        row = await self.db.query_one(
            select(*_legacy_columns).where(
                legacy_todos.c.id == todo_id, legacy_todos.c.username == owner_name
            )
        )
        return LegacyTodo.model_validate(row) if row else None

    async def _owned_todo(self, todo_id: int, user_id: int) -> Todo:
        row = await self.db.query_one(
            select(*_todo_columns)
            .select_from(_todos_with_lists)
            .where(todos.c.id == todo_id, todo_lists.c.user_id == user_id)
        )
        if row is not None:
            return Todo.model_validate(row)
        if await self._fetch(todo_id) is None:
            raise NotFoundError("Todo", todo_id)
        raise ownership_error("Todo", todo_id)

    async def _owned_legacy_todo(self, todo_id: int, owner_name: str) -> LegacyTodo:
        todo = await self._fetch_legacy(todo_id, owner_name)
        if todo is not None:
            return todo
        exists = await self.db.query_one(
            select(legacy_todos.c.id).where(legacy_todos.c.id == todo_id)
        )
        if exists is None:
            raise NotFoundError("Todo", todo_id)
        raise ownership_error("Todo", todo_id)

    async def _owner_id(self, owner_name: str, todo_id: int) -> int:
        """Id of an existing owner; an unknown owner cannot own the todo."""
        user = await self.users.get_user_by_username(owner_name)
        if user is None:
            raise ownership_error("Todo", todo_id)
        return user.id

    # ------------------------ Write ------------------------

    async def _insert(self, list_id: int, text: str) -> Todo:
        async with storage_operation("create todo"):
            result = await self.db.execute(
                insert(todos).values(text=text, completed=False, list_id=list_id)
            )
            created = await self._fetch(result.lastrowid)
        if created is None:
            raise StorageError("Failed to retrieve created todo", operation="create todo")
        return created

    async def create_todo_for_owner(self, owner_name: str, text: str) -> Todo | LegacyTodo:
        trimmed = validate_todo_text(text)
        if self.schema_is_normalized():
            user = await self.users.get_or_create_user(owner_name)
            todo_list = await self.default_list_for(user.id)
            return await self._insert(todo_list.id, trimmed)
        async with storage_operation("create todo"):
            try:
                result = await self.db.execute(
                    insert(legacy_todos).values(text=trimmed, completed=False, username=owner_name)
                )
            except IntegrityError as exc:
                raise ValidationError(
                    "Todo text cannot be empty or contain only whitespace",
                    field="text",
                    rule="blank",
                ) from exc
            created = await self._fetch_legacy(result.lastrowid, owner_name)
        if created is None:
            raise StorageError("Failed to retrieve created todo", operation="create todo")
        return created

    async def create_todo_in_list(self, list_id: int, owner_id: int, text: str) -> Todo:
        self._require_normalized("create a todo in a list")
        trimmed = validate_todo_text(text)
        if not await self.lists.owns_list(list_id, owner_id):
            raise ownership_error("List", list_id)
        return await self._insert(list_id, trimmed)

    async def _update(self, owner_name: str, todo_id: int, operation: str, **values) -> Todo | LegacyTodo:
        validate_id(todo_id, field="todo_id", label="Todo ID")
        if self.schema_is_normalized():
            user_id = await self._owner_id(owner_name, todo_id)
            async with storage_operation(operation):
                await self._owned_todo(todo_id, user_id)
                await self.db.execute(update(todos).where(todos.c.id == todo_id).values(**values))
                updated = await self._owned_todo(todo_id, user_id)
            return updated
        async with storage_operation(operation):
            await self._owned_legacy_todo(todo_id, owner_name)
            result = await self.db.execute(
                update(legacy_todos)
                .where(legacy_todos.c.id == todo_id, legacy_todos.c.username == owner_name)
                .values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("Todo", todo_id)
            return await self._owned_legacy_todo(todo_id, owner_name)

    async def set_completion(self, owner_name: str, todo_id: int, completed: bool) -> Todo | LegacyTodo:
        return await self._update(
            owner_name, todo_id, "update todo", completed=validate_completed(completed)
        )

    async def update_text(self, owner_name: str, todo_id: int, text: str) -> Todo | LegacyTodo:
        return await self._update(
            owner_name, todo_id, "update todo text", text=validate_todo_text(text)
        )

    async def delete(self, owner_name: str, todo_id: int) -> None:
        validate_id(todo_id, field="todo_id", label="Todo ID")
        if self.schema_is_normalized():
            user_id = await self._owner_id(owner_name, todo_id)
            async with storage_operation("delete todo"):
                await self._owned_todo(todo_id, user_id)
                await self.db.execute(delete(todos).where(todos.c.id == todo_id))
            return
        async with storage_operation("delete todo"):
            await self._owned_legacy_todo(todo_id, owner_name)
            result = await self.db.execute(
                delete(legacy_todos).where(
                    legacy_todos.c.id == todo_id, legacy_todos.c.username == owner_name
                )
            )
        if result.rowcount == 0:
            raise NotFoundError("Todo", todo_id)

    async def move_to_list(self, todo_id: int, target_list_id: int, owner_id: int) -> Todo:
        """Reassign a todo to another list of the same owner; text, status and timestamp stay."""
        self._require_normalized("move a todo")
        validate_id(todo_id, field="todo_id", label="Todo ID")
        validate_id(target_list_id, field="list_id", label="List ID")
        if not await self.lists.owns_list(target_list_id, owner_id):
            raise ownership_error("List", target_list_id)
        async with storage_operation("move todo"):
            todo = await self._owned_todo(todo_id, owner_id)
            if todo.list_id != target_list_id:
                await self.db.execute(
                    update(todos).where(todos.c.id == todo_id).values(list_id=target_list_id)
                )
            moved = await self._owned_todo(todo_id, owner_id)
        logger.info(f"Moved todo {todo_id} from list {todo.list_id} to list {target_list_id}")
        return moved
