from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.exc import SQLAlchemyError

# Ownership failures on another user's rows are reported exactly like missing rows,
# so callers cannot learn about the existence of someone else's data.
NOT_FOUND_OBSCURES_FORBIDDEN = True


class TodoAppError(Exception):
    """Base class for every error raised by the storage layer."""


class ValidationError(TodoAppError):
    def __init__(self, message: str, *, field: str, rule: str):
        super().__init__(message)
        self.field = field
        self.rule = rule


class NotFoundError(TodoAppError):
    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} with ID {identifier} not found")
        self.resource = resource
        self.identifier = identifier


class ForbiddenError(TodoAppError):
    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} with ID {identifier} belongs to another user")
        self.resource = resource
        self.identifier = identifier


class ConflictError(TodoAppError):
    pass


class StorageError(TodoAppError):
    def __init__(self, message: str, *, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class MigrationError(StorageError):
    def __init__(self, migration: str, phase: str, cause: BaseException):
        super().__init__(
            f"Migration {migration} failed during {phase}: {cause}",
            operation=f"migrate:{migration}",
        )
        self.migration = migration
        self.phase = phase


class SchemaShapeError(StorageError):
    """Raised when an operation needs the normalized schema but the store is still legacy."""


def ownership_error(resource: str, identifier: Any) -> TodoAppError:
    if NOT_FOUND_OBSCURES_FORBIDDEN:
        return NotFoundError(resource, identifier)
    return ForbiddenError(resource, identifier)


@asynccontextmanager
async def storage_operation(operation: str) -> AsyncIterator[None]:
    """
    Wrap engine failures escaping the block into StorageError.

    Domain errors (ValidationError, NotFoundError, ...) pass through untouched.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        raise StorageError(f"Failed to {operation}: {exc}", operation=operation) from exc
