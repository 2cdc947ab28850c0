from typing import Any

from app.errors import ValidationError

USERNAME_MAX_LENGTH = 50
LIST_NAME_MAX_LENGTH = 100
TODO_TEXT_MAX_LENGTH = 500


def _trimmed(value: Any, *, field: str, label: str, max_length: int) -> str:
    if not isinstance(value, str):
        raise ValidationError(
            f"{label} is required and must be a string", field=field, rule="required"
        )
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(
            f"{label} cannot be empty or contain only whitespace", field=field, rule="blank"
        )
    if len(trimmed) > max_length:
        raise ValidationError(
            f"{label} cannot exceed {max_length} characters", field=field, rule="too_long"
        )
    return trimmed


def validate_username(value: Any) -> str:
    return _trimmed(value, field="username", label="Username", max_length=USERNAME_MAX_LENGTH)


def validate_list_name(value: Any) -> str:
    return _trimmed(value, field="name", label="List name", max_length=LIST_NAME_MAX_LENGTH)


def validate_todo_text(value: Any) -> str:
    return _trimmed(value, field="text", label="Todo text", max_length=TODO_TEXT_MAX_LENGTH)


def validate_id(value: Any, *, field: str, label: str) -> int:
    """Ids must be positive integers; bool is rejected even though it subclasses int."""
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{label} must be a positive integer", field=field, rule="invalid")
    return value


def validate_completed(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(
            "Completed status must be a boolean value", field="completed", rule="invalid"
        )
    return value
