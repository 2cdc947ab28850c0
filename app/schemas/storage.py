from typing import Any

from pydantic import BaseModel


class StorageReport(BaseModel):
    schema_shape: str
    applied_migrations: list[str]
    row_counts: dict[str, int]
    archived_legacy_table: bool
    foreign_key_violations: list[dict[str, Any]]
