from sqlalchemy import Column, DateTime, Integer, String, Table, func

from app.database import metadata

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), unique=True, nullable=False),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
    sqlite_autoincrement=True,
)
