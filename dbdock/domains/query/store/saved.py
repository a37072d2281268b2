"""Saved (named) queries kept alongside connections in the app state."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from dbdock.domains.connections.app.sanitize import (
    MAX_DATABASE_NAME_LENGTH,
    MAX_ID_LENGTH,
    MAX_NAME_LENGTH,
    coerce_str,
    parse_int,
    pick,
    unique_id,
)

MAX_SQL_LENGTH = 1_000_000


@dataclass
class SavedQuery:
    """A saved query."""

    id: str
    name: str
    sql: str
    connection_id: str = ""
    db_name: str = ""
    created_at: int = 0  # epoch milliseconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sql": self.sql,
            "connectionId": self.connection_id,
            "dbName": self.db_name,
            "createdAt": self.created_at,
        }


def sanitize_saved_query(value: Any, ordinal: int = 1) -> SavedQuery | None:
    """Sanitize one saved query; returns None if it has no SQL text."""
    if not isinstance(value, Mapping):
        return None
    sql = coerce_str(value.get("sql"), strip=False, max_length=MAX_SQL_LENGTH)
    if not sql.strip():
        return None
    created_at = parse_int(pick(value, "createdAt", "created_at"))
    return SavedQuery(
        id=coerce_str(value.get("id"), f"query-{ordinal}", max_length=MAX_ID_LENGTH),
        name=coerce_str(value.get("name"), f"Query {ordinal}", max_length=MAX_NAME_LENGTH),
        sql=sql,
        connection_id=coerce_str(pick(value, "connectionId", "connection_id"), max_length=MAX_ID_LENGTH),
        db_name=coerce_str(pick(value, "dbName", "db_name"), max_length=MAX_DATABASE_NAME_LENGTH),
        created_at=created_at if created_at is not None and created_at >= 0 else 0,
    )


def sanitize_saved_queries(value: Any) -> list[SavedQuery]:
    if not isinstance(value, list):
        return []
    taken: set[str] = set()
    result: list[SavedQuery] = []
    for index, raw in enumerate(value):
        query = sanitize_saved_query(raw, index + 1)
        if query is None:
            continue
        query.id = unique_id(query.id, index + 1, taken)
        taken.add(query.id)
        result.append(query)
    return result
