"""Import and export of connection lists as JSON arrays."""

from __future__ import annotations

import json
from collections.abc import Iterable

from dbdock.domains.connections.app.sanitize import sanitize_connections
from dbdock.domains.connections.domain.config import SavedConnection
from dbdock.domains.connections.providers.exceptions import ImportFormatError


def export_connections(connections: Iterable[SavedConnection]) -> str:
    return json.dumps([c.to_dict() for c in connections], indent=2, ensure_ascii=False)


def import_connections(text: str | bytes, taken_ids: Iterable[str] = ()) -> list[SavedConnection]:
    """Parse an exported connection list.

    Entries are sanitized; missing or duplicate ids are regenerated.

    Raises:
        ImportFormatError: If the payload is not valid JSON or not an array.
    """
    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise ImportFormatError(f"Import file is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise ImportFormatError(f"Import file must contain a JSON array, got {type(data).__name__}")
    return sanitize_connections(data, taken_ids=taken_ids)
