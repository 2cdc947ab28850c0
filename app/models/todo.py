from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Table, false, func

from app.database import metadata

todos = Table(
    "todos",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("text", String(500), nullable=False),
    Column("completed", Boolean, nullable=False, server_default=false()),
    Column(
        "list_id",
        Integer,
        ForeignKey("todo_lists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
    sqlite_autoincrement=True,
)
