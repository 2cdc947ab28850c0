from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Table, UniqueConstraint, func

from app.database import metadata

DEFAULT_LIST_NAME = "My Tasks"

todo_lists = Table(
    "todo_lists",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
    UniqueConstraint("name", "user_id"),
    sqlite_autoincrement=True,
)
