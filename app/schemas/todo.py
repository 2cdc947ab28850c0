from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class TodoBase(BaseModel):
    id: int
    text: str
    completed: bool


class Todo(TodoBase):
    list_id: int
    created_at: Optional[datetime] = None


class LegacyTodo(TodoBase):
    """A row of the flat pre-migration table; ownership is the plain username column."""

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
