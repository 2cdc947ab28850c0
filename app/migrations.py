"""
Schema migrations for the todo store.

The store starts life as a single flat ``todos`` table owned by a plain username
column and is migrated, exactly once per named step, to the normalized
``users`` -> ``todo_lists`` -> ``todos`` shape. Completed steps are recorded in
the ``migrations`` ledger; a recorded name is never applied again.

Startup is two-phase: ``prepare_storage()`` runs every pending migration and
returns a ``StorageReady`` token, and services/repositories are built from that
token only. A failing migration raises ``MigrationError`` and no token is issued.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from app.database import Connection
from app.errors import MigrationError, StorageError
from app.models.todo_list import DEFAULT_LIST_NAME
from app.schemas.storage import StorageReport

logger = logging.getLogger(__name__)

T = TypeVar("T")

ADD_OWNER_COLUMN = "add_username_column"
NORMALIZE_TO_LISTS = "migrate_to_multi_list_schema"

# Reserved owner of every todo that existed before users were introduced.
DEFAULT_OWNER_USERNAME = "default_user"

LIVE_TODOS_TABLE = "todos"
STAGING_TODOS_TABLE = "todos_new"
ARCHIVED_TODOS_TABLE = "todos_old"

CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS migrations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    executed_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_LEGACY_TODOS = """
CREATE TABLE IF NOT EXISTS todos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    text TEXT NOT NULL CHECK(length(trim(text)) > 0),
    completed BOOLEAN NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

LEGACY_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_legacy_todos_completed ON todos(completed)",
    "CREATE INDEX IF NOT EXISTS idx_legacy_todos_created_at ON todos(created_at)",
)

LEGACY_OWNER_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_todos_username ON todos(username)",
    "CREATE INDEX IF NOT EXISTS idx_todos_username_completed ON todos(username, completed)",
)

LEGACY_UPDATED_AT_TRIGGER = """
CREATE TRIGGER IF NOT EXISTS update_todos_updated_at
AFTER UPDATE ON todos
FOR EACH ROW
BEGIN
    UPDATE todos SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
END
"""

CREATE_USERS = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT UNIQUE NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_TODO_LISTS = """
CREATE TABLE IF NOT EXISTS todo_lists (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    user_id INTEGER NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    UNIQUE(name, user_id)
)
"""

CREATE_STAGING_TODOS = """
CREATE TABLE IF NOT EXISTS todos_new (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    text TEXT NOT NULL,
    completed BOOLEAN DEFAULT FALSE,
    list_id INTEGER NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (list_id) REFERENCES todo_lists(id) ON DELETE CASCADE
)
"""

# Legacy ids are carried over so that a repeated copy is absorbed by OR IGNORE.
COPY_LEGACY_ROWS = """
INSERT OR IGNORE INTO todos_new (id, text, completed, list_id, created_at)
SELECT id, text, completed, :list_id, created_at FROM todos
"""

# (name, table, statement). Databases written by the flat-table era already carry
# idx_todos_completed/idx_todos_created_at on the table that gets archived.
NORMALIZED_INDEXES = (
    ("idx_users_username", "users",
     "CREATE INDEX IF NOT EXISTS idx_users_username ON users(username)"),
    ("idx_todo_lists_user_id", "todo_lists",
     "CREATE INDEX IF NOT EXISTS idx_todo_lists_user_id ON todo_lists(user_id)"),
    ("idx_todo_lists_name_user", "todo_lists",
     "CREATE UNIQUE INDEX IF NOT EXISTS idx_todo_lists_name_user ON todo_lists(name, user_id)"),
    ("idx_todos_list_id", "todos",
     "CREATE INDEX IF NOT EXISTS idx_todos_list_id ON todos(list_id)"),
    ("idx_todos_completed", "todos",
     "CREATE INDEX IF NOT EXISTS idx_todos_completed ON todos(completed)"),
    ("idx_todos_created_at", "todos",
     "CREATE INDEX IF NOT EXISTS idx_todos_created_at ON todos(created_at)"),
)


class SchemaShape(str, Enum):
    LEGACY = "legacy"
    NORMALIZED = "normalized"


@dataclass(frozen=True)
class StorageReady:
    """Proof that migrations finished; carries the schema shape they left behind."""

    connection: Connection
    shape: SchemaShape

    @property
    def normalized(self) -> bool:
        return self.shape is SchemaShape.NORMALIZED


class MigrationContext:
    """Handed to each migration; tracks the phase reported if a statement fails."""

    def __init__(self, connection: Connection, name: str) -> None:
        self.connection = connection
        self.name = name
        self.phase = "start"

    def enter(self, phase: str) -> None:
        self.phase = phase
        logger.debug(f"[{self.name}] {phase}")


@dataclass(frozen=True)
class Migration:
    name: str
    apply: Callable[[MigrationContext], Awaitable[None]]


async def _live_todos_columns(connection: Connection) -> list[str]:
    return await connection.table_columns(LIVE_TODOS_TABLE)


async def add_owner_column(ctx: MigrationContext) -> None:
    """
    Add the ``username`` owner column to the flat table.

    Whether the column is needed is decided from the live column list, not from
    the ledger, so a store that already has it still gets the step recorded.
    """
    ctx.enter("inspect-columns")
    columns = await _live_todos_columns(ctx.connection)
    if not columns or "username" in columns or "list_id" in columns:
        logger.info("Owner column already present, nothing to add")
        return
    ctx.enter("add-column")
    await ctx.connection.execute(
        "ALTER TABLE todos ADD COLUMN username TEXT NOT NULL DEFAULT ''"
    )
    logger.info("Added username column to todos table")


async def _ensure_default_owner(connection: Connection) -> int:
    row = await connection.query_one(
        "SELECT id FROM users WHERE username = :username",
        {"username": DEFAULT_OWNER_USERNAME},
    )
    if row is not None:
        logger.info("Default user already exists")
        return row["id"]
    result = await connection.execute(
        "INSERT INTO users (username) VALUES (:username)",
        {"username": DEFAULT_OWNER_USERNAME},
    )
    logger.info(f"Created default user with ID: {result.lastrowid}")
    return result.lastrowid


async def _ensure_default_list(connection: Connection, user_id: int) -> int:
    row = await connection.query_one(
        "SELECT id FROM todo_lists WHERE user_id = :user_id AND name = :name",
        {"user_id": user_id, "name": DEFAULT_LIST_NAME},
    )
    if row is not None:
        logger.info("Default list already exists")
        return row["id"]
    result = await connection.execute(
        "INSERT INTO todo_lists (name, user_id) VALUES (:name, :user_id)",
        {"name": DEFAULT_LIST_NAME, "user_id": user_id},
    )
    logger.info(f'Created default list "{DEFAULT_LIST_NAME}" with ID: {result.lastrowid}')
    return result.lastrowid


async def _copy_legacy_rows(ctx: MigrationContext) -> None:
    connection = ctx.connection
    row = await connection.query_one("SELECT COUNT(*) AS count FROM todos")
    count = row["count"]
    if not count:
        logger.info("No existing todos found, skipping data migration")
        return
    logger.info(f"Found {count} existing todos to migrate")

    ctx.enter("default-owner")
    owner_id = await _ensure_default_owner(connection)
    ctx.enter("default-list")
    list_id = await _ensure_default_list(connection, owner_id)

    ctx.enter("copy-rows")
    result = await connection.execute(COPY_LEGACY_ROWS, {"list_id": list_id})
    if result.rowcount != count:
        logger.warning(
            f"Copied {result.rowcount} of {count} todos, the rest were already present"
        )
    logger.info(f"Migrated {count} todos to list ID: {list_id}")


async def _build_normalized_indexes(connection: Connection) -> None:
    for name, table, statement in NORMALIZED_INDEXES:
        existing = await connection.query_one(
            "SELECT tbl_name FROM sqlite_master WHERE type = 'index' AND name = :name",
            {"name": name},
        )
        # renaming a table carries its indexes along, names included
        if existing is not None and existing["tbl_name"] != table:
            logger.warning(f"Index {name} is attached to {existing['tbl_name']}, rebuilding on {table}")
            await connection.execute(f"DROP INDEX {name}")
        await connection.execute(statement)


async def normalize_to_lists(ctx: MigrationContext) -> None:
    """
    Move the flat table onto users/todo_lists/todos.

    Every phase checks the live schema first, so re-running after a crash that
    happened before the ledger entry was written converges instead of duplicating.
    """
    connection = ctx.connection

    ctx.enter("create-tables")
    await connection.execute(CREATE_USERS)
    await connection.execute(CREATE_TODO_LISTS)

    columns = await _live_todos_columns(connection)
    if columns and "list_id" not in columns:
        await connection.execute(CREATE_STAGING_TODOS)
        ctx.enter("count-rows")
        await _copy_legacy_rows(ctx)
        ctx.enter("archive-legacy")
        await connection.execute(f"ALTER TABLE todos RENAME TO {ARCHIVED_TODOS_TABLE}")
    elif await connection.has_table(ARCHIVED_TODOS_TABLE):
        logger.warning("Legacy todos table already archived, resuming normalization")

    ctx.enter("promote")
    if await connection.has_table(STAGING_TODOS_TABLE):
        if await connection.has_table(LIVE_TODOS_TABLE):
            raise StorageError(
                f"Both {STAGING_TODOS_TABLE} and {LIVE_TODOS_TABLE} exist after archiving",
                operation="promote",
            )
        await connection.execute(f"ALTER TABLE {STAGING_TODOS_TABLE} RENAME TO todos")

    ctx.enter("indexes")
    await _build_normalized_indexes(connection)
    logger.info("New schema indexes created")


MIGRATIONS: tuple[Migration, ...] = (
    Migration(ADD_OWNER_COLUMN, add_owner_column),
    Migration(NORMALIZE_TO_LISTS, normalize_to_lists),
)


async def detect_schema_shape(connection: Connection) -> SchemaShape:
    if not await connection.has_table("migrations"):
        return SchemaShape.LEGACY
    row = await connection.query_one(
        "SELECT name FROM migrations WHERE name = :name", {"name": NORMALIZE_TO_LISTS}
    )
    return SchemaShape.NORMALIZED if row is not None else SchemaShape.LEGACY


class MigrationRunner:
    """Applies a fixed, ordered list of named migrations against one connection."""

    def __init__(
        self, connection: Connection, migrations: Sequence[Migration] = MIGRATIONS
    ) -> None:
        self.connection = connection
        self.migrations = tuple(migrations)

    async def applied(self) -> list[str]:
        if not await self.connection.has_table("migrations"):
            return []
        rows = await self.connection.query_many("SELECT name FROM migrations ORDER BY id")
        return [row["name"] for row in rows]

    async def _is_recorded(self, name: str) -> bool:
        row = await self.connection.query_one(
            "SELECT name FROM migrations WHERE name = :name", {"name": name}
        )
        return row is not None

    async def _bootstrap(self, ctx: MigrationContext) -> None:
        ctx.enter("ledger")
        await self.connection.execute(CREATE_LEDGER)
        # A staging or archived table means normalization is under way or done;
        # recreating the flat table then would shadow it.
        ctx.enter("legacy-table")
        if not (
            await self.connection.has_table(STAGING_TODOS_TABLE)
            or await self.connection.has_table(ARCHIVED_TODOS_TABLE)
        ):
            await self.connection.execute(CREATE_LEGACY_TODOS)

    async def _legacy_support(self, ctx: MigrationContext) -> None:
        ctx.enter("legacy-indexes")
        for statement in LEGACY_INDEXES:
            await self.connection.execute(statement)
        if "username" in await _live_todos_columns(self.connection):
            for statement in LEGACY_OWNER_INDEXES:
                await self.connection.execute(statement)
        ctx.enter("legacy-trigger")
        await self.connection.execute(LEGACY_UPDATED_AT_TRIGGER)
        logger.info("Original schema indexes and update trigger created")

    async def _guarded(self, ctx: MigrationContext, step: Callable[[], Awaitable[T]]) -> T:
        try:
            return await step()
        except MigrationError:
            raise
        except (SQLAlchemyError, StorageError) as exc:
            logger.error(f"Migration {ctx.name} failed during {ctx.phase}: {exc}")
            raise MigrationError(ctx.name, ctx.phase, exc) from exc

    async def apply_all(self) -> list[str]:
        """Apply every migration not yet in the ledger; returns the names applied now."""
        bootstrap = MigrationContext(self.connection, "bootstrap")
        await self._guarded(bootstrap, lambda: self._bootstrap(bootstrap))

        applied_now = []
        for migration in self.migrations:
            ctx = MigrationContext(self.connection, migration.name)

            async def run(migration=migration, ctx=ctx) -> None:
                ctx.enter("check-ledger")
                if await self._is_recorded(migration.name):
                    logger.info(f"Migration {migration.name} already executed, skipping")
                    return
                await migration.apply(ctx)
                ctx.enter("record")
                await self.connection.execute(
                    "INSERT INTO migrations (name) VALUES (:name)", {"name": migration.name}
                )
                applied_now.append(migration.name)
                logger.info(f"Migration {migration.name} completed")

            await self._guarded(ctx, run)

        finish = MigrationContext(self.connection, "finish")
        finish.enter("detect-shape")
        shape = await self._guarded(finish, lambda: detect_schema_shape(self.connection))
        if shape is SchemaShape.LEGACY:
            await self._guarded(finish, lambda: self._legacy_support(finish))
        logger.info("All migrations completed successfully")
        return applied_now


async def prepare_storage(
    connection: Connection, migrations: Sequence[Migration] | None = None
) -> StorageReady:
    """Open the connection if needed, apply pending migrations and issue the ready token."""
    if not connection.is_open:
        await connection.open()
    runner = MigrationRunner(connection, MIGRATIONS if migrations is None else migrations)
    await runner.apply_all()
    shape = await detect_schema_shape(connection)
    logger.info(f"Storage ready ({shape.value} schema)")
    return StorageReady(connection, shape)


async def verify_storage(connection: Connection) -> StorageReport:
    """Row counts and referential-integrity check of the current store."""
    row_counts = {}
    for table in ("users", "todo_lists", "todos"):
        if await connection.has_table(table):
            row = await connection.query_one(f"SELECT COUNT(*) AS count FROM {table}")
            row_counts[table] = row["count"]
    violations = await connection.query_many("PRAGMA foreign_key_check")
    return StorageReport(
        schema_shape=(await detect_schema_shape(connection)).value,
        applied_migrations=await MigrationRunner(connection).applied(),
        row_counts=row_counts,
        archived_legacy_table=await connection.has_table(ARCHIVED_TODOS_TABLE),
        foreign_key_violations=violations,
    )
