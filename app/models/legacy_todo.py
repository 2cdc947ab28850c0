from sqlalchemy import Boolean, Column, DateTime, Integer, MetaData, String, Table, func

# Flat pre-migration shape. Kept apart from app.database.metadata since both
# shapes are named "todos" at different points of the store's life.
legacy_metadata = MetaData()

legacy_todos = Table(
    "todos",
    legacy_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("text", String, nullable=False),
    Column("completed", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    Column("username", String, nullable=False, server_default=""),
)
