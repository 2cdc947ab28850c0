from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class TodoList(BaseModel):
    id: int
    name: str
    user_id: int
    created_at: Optional[datetime] = None
    todo_count: Optional[int] = None
