import logging

from sqlalchemy.exc import IntegrityError

from app.errors import NotFoundError, SchemaShapeError, StorageError, storage_operation
from app.migrations import StorageReady
from app.models.todo_list import DEFAULT_LIST_NAME
from app.repositories.todo_list_repo import TodoListRepository
from app.repositories.user_repo import UserRepository
from app.schemas.todo_list import TodoList
from app.schemas.user import User
from app.validators import validate_id, validate_username

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, ready: StorageReady):
        if not ready.normalized:
            raise SchemaShapeError(
                "Users are only available once the store is normalized", operation="user-service"
            )
        self.repo = UserRepository(ready.connection)
        self.list_repo = TodoListRepository(ready.connection)

    async def get_or_create_user(self, username: str) -> User:
        """
        Return the user with this (trimmed) username, creating it together with
        its "My Tasks" list when it does not exist yet.
        """
        name = validate_username(username)
        async with storage_operation("get or create user"):
            existing = await self.repo.get_by_username(name)
            if existing:
                return existing
            try:
                user_id = await self.repo.create(name)
            except IntegrityError:
                # another caller inserted the same username between our read and insert
                existing = await self.repo.get_by_username(name)
                if existing:
                    logger.warning(f"Username {name!r} created concurrently, using existing row")
                    return existing
                raise
            logger.info(f"Created user {name!r} with ID {user_id}")
            await self.create_default_list(user_id)
            created = await self.repo.get(user_id)
            if created is None:
                raise StorageError("Failed to retrieve created user", operation="get or create user")
            return created

    async def create_default_list(self, user_id: int) -> TodoList:
        """Idempotent: an existing "My Tasks" list of the user is returned as is."""
        validate_id(user_id, field="user_id", label="User ID")
        async with storage_operation("create default list"):
            if await self.repo.get(user_id) is None:
                raise NotFoundError("User", user_id)
            existing = await self.list_repo.get_by_name(user_id, DEFAULT_LIST_NAME)
            if existing:
                return existing
            try:
                await self.list_repo.create(user_id, DEFAULT_LIST_NAME)
            except IntegrityError:
                existing = await self.list_repo.get_by_name(user_id, DEFAULT_LIST_NAME)
                if existing:
                    logger.warning(f"Default list for user {user_id} created concurrently")
                    return existing
                raise
            created = await self.list_repo.get_by_name(user_id, DEFAULT_LIST_NAME)
            if created is None:
                raise StorageError(
                    "Failed to retrieve created default list", operation="create default list"
                )
            return created

    async def get_user(self, user_id: int) -> User | None:
        validate_id(user_id, field="user_id", label="User ID")
        async with storage_operation("get user by ID"):
            return await self.repo.get(user_id)

    async def get_user_by_username(self, username: str) -> User | None:
        name = validate_username(username)
        async with storage_operation("get user by username"):
            return await self.repo.get_by_username(name)
