from sqlalchemy import insert, select

from app.database import Connection
from app.models.user import users
from app.schemas.user import User

_user_columns = (users.c.id, users.c.username, users.c.created_at)


class UserRepository:
    def __init__(self, db: Connection):
        self.db = db

    async def create(self, username: str) -> int:
        """Insert a user row; a taken username raises IntegrityError."""
        result = await self.db.execute(insert(users).values(username=username))
        return result.lastrowid

    async def get(self, user_id: int) -> User | None:
        row = await self.db.query_one(select(*_user_columns).where(users.c.id == user_id))
        return User.model_validate(row) if row else None

    async def get_by_username(self, username: str) -> User | None:
        row = await self.db.query_one(select(*_user_columns).where(users.c.username == username))
        return User.model_validate(row) if row else None
