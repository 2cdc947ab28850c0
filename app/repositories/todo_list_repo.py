from sqlalchemy import delete, func, insert, select, update

from app.database import Connection
from app.models.todo import todos
from app.models.todo_list import todo_lists
from app.schemas.todo_list import TodoList

_list_columns = (todo_lists.c.id, todo_lists.c.name, todo_lists.c.user_id, todo_lists.c.created_at)


class TodoListRepository:
    def __init__(self, db: Connection):
        self.db = db

    async def create(self, user_id: int, name: str) -> int:
        result = await self.db.execute(insert(todo_lists).values(name=name, user_id=user_id))
        return result.lastrowid

    async def get(self, list_id: int) -> TodoList | None:
        row = await self.db.query_one(select(*_list_columns).where(todo_lists.c.id == list_id))
        return TodoList.model_validate(row) if row else None

    async def get_by_name(
        self, user_id: int, name: str, exclude_id: int | None = None
    ) -> TodoList | None:
        stmt = select(*_list_columns).where(
            todo_lists.c.user_id == user_id, todo_lists.c.name == name
        )
        if exclude_id is not None:
            stmt = stmt.where(todo_lists.c.id != exclude_id)
        row = await self.db.query_one(stmt)
        return TodoList.model_validate(row) if row else None

    async def list_for_user(self, user_id: int, include_todo_count: bool = False) -> list[TodoList]:
        if include_todo_count:
            stmt = (
                select(*_list_columns, func.count(todos.c.id).label("todo_count"))
                .select_from(todo_lists.outerjoin(todos, todos.c.list_id == todo_lists.c.id))
                .where(todo_lists.c.user_id == user_id)
                .group_by(*_list_columns)
            )
        else:
            stmt = select(*_list_columns).where(todo_lists.c.user_id == user_id)
        stmt = stmt.order_by(todo_lists.c.created_at.asc(), todo_lists.c.id.asc())
        rows = await self.db.query_many(stmt)
        return [TodoList.model_validate(row) for row in rows]

    async def preferred_for_user(self, user_id: int, name: str) -> TodoList | None:
        """The user's list with this name, else their oldest list."""
        row = await self.db.query_one(
            select(*_list_columns)
            .where(todo_lists.c.user_id == user_id)
            .order_by(
                (todo_lists.c.name == name).desc(),
                todo_lists.c.created_at.asc(),
                todo_lists.c.id.asc(),
            )
            .limit(1)
        )
        return TodoList.model_validate(row) if row else None

    async def is_owned_by(self, list_id: int, user_id: int) -> bool:
        row = await self.db.query_one(
            select(todo_lists.c.id).where(
                todo_lists.c.id == list_id, todo_lists.c.user_id == user_id
            )
        )
        return row is not None

    async def count_for_user(self, user_id: int) -> int:
        row = await self.db.query_one(
            select(func.count().label("count"))
            .select_from(todo_lists)
            .where(todo_lists.c.user_id == user_id)
        )
        return row["count"]

    async def rename(self, list_id: int, name: str) -> int:
        result = await self.db.execute(
            update(todo_lists).where(todo_lists.c.id == list_id).values(name=name)
        )
        return result.rowcount

    async def delete(self, list_id: int) -> int:
        result = await self.db.execute(delete(todo_lists).where(todo_lists.c.id == list_id))
        return result.rowcount
