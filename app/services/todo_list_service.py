import logging

from sqlalchemy.exc import IntegrityError

from app.errors import (
    ConflictError,
    NotFoundError,
    SchemaShapeError,
    StorageError,
    ownership_error,
    storage_operation,
)
from app.migrations import StorageReady
from app.repositories.todo_list_repo import TodoListRepository
from app.repositories.user_repo import UserRepository
from app.schemas.todo_list import TodoList
from app.validators import validate_id, validate_list_name

logger = logging.getLogger(__name__)


def _duplicate(name: str) -> ConflictError:
    return ConflictError(f'A list named "{name}" already exists for this user')


class TodoListService:
    def __init__(self, ready: StorageReady):
        if not ready.normalized:
            raise SchemaShapeError(
                "Todo lists are only available once the store is normalized",
                operation="todo-list-service",
            )
        self.repo = TodoListRepository(ready.connection)
        self.user_repo = UserRepository(ready.connection)

    async def _owned(self, list_id: int, user_id: int | None) -> TodoList:
        todo_list = await self.repo.get(list_id)
        if todo_list is None:
            raise NotFoundError("List", list_id)
        if user_id is not None and todo_list.user_id != user_id:
            raise ownership_error("List", list_id)
        return todo_list

    async def lists_for_user(self, user_id: int, include_todo_count: bool = False) -> list[TodoList]:
        validate_id(user_id, field="user_id", label="User ID")
        async with storage_operation("retrieve lists for user"):
            return await self.repo.list_for_user(user_id, include_todo_count)

    async def get_list(self, list_id: int, user_id: int | None = None) -> TodoList | None:
        validate_id(list_id, field="list_id", label="List ID")
        if user_id is not None:
            validate_id(user_id, field="user_id", label="User ID")
        async with storage_operation("get list by ID"):
            todo_list = await self.repo.get(list_id)
        if todo_list is None or (user_id is not None and todo_list.user_id != user_id):
            return None
        return todo_list

    async def owns_list(self, list_id: int, user_id: int) -> bool:
        validate_id(list_id, field="list_id", label="List ID")
        validate_id(user_id, field="user_id", label="User ID")
        async with storage_operation("validate list ownership"):
            return await self.repo.is_owned_by(list_id, user_id)

    async def create_list(self, user_id: int, name: str) -> TodoList:
        validate_id(user_id, field="user_id", label="User ID")
        trimmed = validate_list_name(name)
        async with storage_operation("create list"):
            if await self.user_repo.get(user_id) is None:
                raise NotFoundError("User", user_id)
            if await self.repo.get_by_name(user_id, trimmed) is not None:
                raise _duplicate(trimmed)
            try:
                list_id = await self.repo.create(user_id, trimmed)
            except IntegrityError as exc:
                raise _duplicate(trimmed) from exc
            created = await self.repo.get(list_id)
            if created is None:
                raise StorageError("Failed to retrieve created list", operation="create list")
        logger.info(f'Created list "{trimmed}" ({created.id}) for user {user_id}')
        return created

    async def rename_list(self, list_id: int, name: str, user_id: int | None = None) -> TodoList:
        """Renaming a list to its current name succeeds and changes nothing."""
        validate_id(list_id, field="list_id", label="List ID")
        trimmed = validate_list_name(name)
        async with storage_operation("update list name"):
            todo_list = await self._owned(list_id, user_id)
            if await self.repo.get_by_name(todo_list.user_id, trimmed, exclude_id=list_id):
                raise _duplicate(trimmed)
            try:
                renamed = await self.repo.rename(list_id, trimmed)
            except IntegrityError as exc:
                raise _duplicate(trimmed) from exc
            if renamed == 0:
                raise NotFoundError("List", list_id)
            return await self._owned(list_id, user_id)

    async def delete_list(self, list_id: int, user_id: int | None = None) -> None:
        """Delete a list and, through the foreign key cascade, its todos."""
        validate_id(list_id, field="list_id", label="List ID")
        async with storage_operation("delete list"):
            todo_list = await self._owned(list_id, user_id)
            if await self.repo.count_for_user(todo_list.user_id) <= 1:
                raise ConflictError(
                    "Cannot delete the last remaining list. Users must have at least one list."
                )
            if await self.repo.delete(list_id) == 0:
                raise NotFoundError("List", list_id)
        logger.info(f"Deleted list {list_id} of user {todo_list.user_id}")
