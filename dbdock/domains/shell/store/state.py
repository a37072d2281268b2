"""Persisted application state.

The state lives in a single versioned JSON document::

    {"version": 3, "state": {"connections": [...], "savedQueries": [...], ...}}

Loading runs two independent stages: ``migrate`` upgrades documents written
by older versions, then ``merge`` re-sanitizes everything against the
defaults. ``merge`` always runs, so hand-edited or externally synced files
are repaired even when their version is current.
"""

from __future__ import annotations

import copy
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dbdock.domains.connections.app.sanitize import (
    MAX_DATABASE_NAME_LENGTH,
    MAX_ID_LENGTH,
    as_mapping,
    bounded_float,
    bounded_int,
    coerce_choice,
    coerce_str,
    parse_float,
    parse_int,
    sanitize_connections,
)
from dbdock.domains.connections.domain.config import SavedConnection
from dbdock.domains.query.store.saved import SavedQuery, sanitize_saved_queries
from dbdock.shared.core.store import CONFIG_DIR, JSONFileStore

logger = logging.getLogger(__name__)

CURRENT_VERSION = 3

DEFAULT_OPACITY = 1.0
DEFAULT_BLUR = 0
LEGACY_DEFAULT_OPACITY = 0.95
OPACITY_EPSILON = 1e-6
MIN_OPACITY = 0.1
MAX_OPACITY = 1.0
MAX_BLUR = 64

DEFAULT_MAX_ROWS = 5000
MIN_MAX_ROWS = 1
MAX_MAX_ROWS = 1_000_000

THEMES = ("light", "dark")
KEYWORD_CASES = ("upper", "lower")
SORT_PREFERENCES = ("name", "frequency")
MAX_MAP_ENTRIES = 10_000
MAX_ACCESS_KEY_LENGTH = MAX_ID_LENGTH + 2 * MAX_DATABASE_NAME_LENGTH + 2


@dataclass
class Appearance:
    opacity: float = DEFAULT_OPACITY
    blur: int = DEFAULT_BLUR

    def to_dict(self) -> dict[str, Any]:
        return {"opacity": self.opacity, "blur": self.blur}


@dataclass
class AppState:
    """Everything the client persists between runs."""

    connections: list[SavedConnection] = field(default_factory=list)
    saved_queries: list[SavedQuery] = field(default_factory=list)
    theme: str = "light"
    appearance: Appearance = field(default_factory=Appearance)
    keyword_case: str = "upper"
    max_rows: int = DEFAULT_MAX_ROWS
    table_access_count: dict[str, int] = field(default_factory=dict)
    table_sort_preference: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "connections": [c.to_dict() for c in self.connections],
            "savedQueries": [q.to_dict() for q in self.saved_queries],
            "theme": self.theme,
            "appearance": self.appearance.to_dict(),
            "sqlFormatOptions": {"keywordCase": self.keyword_case},
            "queryOptions": {"maxRows": self.max_rows},
            "tableAccessCount": dict(self.table_access_count),
            "tableSortPreference": dict(self.table_sort_preference),
        }


def table_access_key(connection_id: str, db_name: str, table_name: str) -> str:
    return f"{connection_id}-{db_name}-{table_name}"


def table_sort_key(connection_id: str, db_name: str) -> str:
    return f"{connection_id}-{db_name}"


# ---------------------------------------------------------------------------
# Sanitizers


def is_legacy_default_appearance(appearance: Any) -> bool:
    """True if the appearance was never changed from the old 0.95/0 default.

    A missing appearance counts as untouched; any explicit blur, or an
    opacity further than OPACITY_EPSILON from 0.95, is a user choice.
    """
    if not isinstance(appearance, Mapping):
        return True
    opacity = parse_float(appearance.get("opacity"))
    if opacity is None:
        opacity = LEGACY_DEFAULT_OPACITY
    blur = parse_float(appearance.get("blur"))
    if blur is None:
        blur = 0
    return abs(opacity - LEGACY_DEFAULT_OPACITY) < OPACITY_EPSILON and blur == 0


def sanitize_appearance(value: Any) -> Appearance:
    data = as_mapping(value)
    return Appearance(
        opacity=bounded_float(data.get("opacity"), DEFAULT_OPACITY, MIN_OPACITY, MAX_OPACITY),
        blur=bounded_int(data.get("blur"), DEFAULT_BLUR, 0, MAX_BLUR),
    )


def sanitize_access_counts(value: Any) -> dict[str, int]:
    result: dict[str, int] = {}
    for key, raw in as_mapping(value).items():
        if len(result) >= MAX_MAP_ENTRIES:
            break
        name = coerce_str(key, max_length=MAX_ACCESS_KEY_LENGTH)
        count = parse_int(raw)
        if not name or count is None or count < 0:
            continue
        result[name] = count
    return result


def sanitize_sort_preferences(value: Any) -> dict[str, str]:
    result: dict[str, str] = {}
    for key, raw in as_mapping(value).items():
        if len(result) >= MAX_MAP_ENTRIES:
            break
        name = coerce_str(key, max_length=MAX_ACCESS_KEY_LENGTH)
        preference = coerce_choice(raw, SORT_PREFERENCES, "")
        if name and preference:
            result[name] = preference
    return result


def default_state() -> AppState:
    return AppState()


def migrate(state: Any, from_version: int) -> dict[str, Any]:
    """Upgrade a raw persisted state written by ``from_version``.

    Returns a raw dict; ``merge`` does the final sanitizing.
    """
    if not isinstance(state, Mapping):
        return {}
    next_state: dict[str, Any] = copy.deepcopy(dict(state))

    if from_version < 2:
        # Version 2 changed the default opacity from 0.95 to 1.0. Only
        # untouched appearances follow the new default.
        appearance = next_state.get("appearance")
        if is_legacy_default_appearance(appearance):
            if isinstance(appearance, Mapping):
                logger.info("Migrating legacy default appearance to the new default")
            next_state["appearance"] = Appearance().to_dict()

    if from_version < 3:
        # Version 3 introduced unique ids and typed connection configs.
        next_state["connections"] = [c.to_dict() for c in sanitize_connections(next_state.get("connections"))]

    return next_state


def merge(loaded: Any, defaults: AppState | None = None) -> AppState:
    """Overlay a loaded (raw) state on the defaults, sanitizing every field."""
    base = defaults or default_state()
    data = as_mapping(loaded)

    def field_or(key: str, fallback: Any) -> Any:
        return data[key] if key in data else fallback

    appearance = sanitize_appearance(field_or("appearance", base.appearance.to_dict()))
    sql_format = as_mapping(data.get("sqlFormatOptions"))
    query_options = as_mapping(data.get("queryOptions"))

    return AppState(
        connections=sanitize_connections(field_or("connections", [c.to_dict() for c in base.connections])),
        saved_queries=sanitize_saved_queries(field_or("savedQueries", [q.to_dict() for q in base.saved_queries])),
        theme=coerce_choice(data.get("theme"), THEMES, base.theme),
        appearance=appearance,
        keyword_case=coerce_choice(sql_format.get("keywordCase"), KEYWORD_CASES, base.keyword_case),
        max_rows=bounded_int(query_options.get("maxRows"), base.max_rows, MIN_MAX_ROWS, MAX_MAX_ROWS),
        table_access_count=sanitize_access_counts(field_or("tableAccessCount", base.table_access_count)),
        table_sort_preference=sanitize_sort_preferences(field_or("tableSortPreference", base.table_sort_preference)),
    )


def load_state_document(document: Any, defaults: AppState | None = None) -> AppState:
    """Run migrate (when needed) and merge on a persisted document."""
    doc = as_mapping(document)
    version = bounded_int(doc.get("version"), 0, 0, 1_000_000)
    raw_state = doc.get("state")
    if version < CURRENT_VERSION:
        logger.info("Migrating persisted state from version %d to %d", version, CURRENT_VERSION)
        raw_state = migrate(raw_state, version)
    return merge(raw_state, defaults)


# ---------------------------------------------------------------------------
# Store


def _resolve_state_path() -> Path:
    override = os.environ.get("DBDOCK_STATE_PATH", "").strip()
    if override:
        return Path(override).expanduser()
    return CONFIG_DIR / "state.json"


class AppStateStore(JSONFileStore):
    """Store for the persisted application state.

    The state is loaded once and kept in memory; every mutation writes the
    whole document back. Mutations are not locked: callers serialize them.
    """

    _instance: AppStateStore | None = None

    def __init__(self, file_path: Path | None = None) -> None:
        super().__init__(file_path or _resolve_state_path())
        self._state: AppState | None = None

    @classmethod
    def get_instance(cls) -> AppStateStore:
        """Get the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None

    @property
    def state(self) -> AppState:
        if self._state is None:
            self._state = self.load()
        return self._state

    def load(self) -> AppState:
        """Read the document from disk, migrating and sanitizing it."""
        document = self._read_json()
        if document is None:
            return default_state()
        return load_state_document(document)

    def reload(self) -> AppState:
        self._state = self.load()
        return self._state

    def save(self, state: AppState | None = None) -> None:
        if state is not None:
            self._state = state
        self._write_json({"version": CURRENT_VERSION, "state": self.state.to_dict()})

    # Settings mutations

    def set_theme(self, theme: str) -> None:
        self.state.theme = coerce_choice(theme, THEMES, self.state.theme)
        self.save()

    def set_appearance(self, opacity: float | None = None, blur: int | None = None) -> Appearance:
        current = self.state.appearance
        self.state.appearance = sanitize_appearance(
            {
                "opacity": current.opacity if opacity is None else opacity,
                "blur": current.blur if blur is None else blur,
            }
        )
        self.save()
        return self.state.appearance

    def set_keyword_case(self, keyword_case: str) -> None:
        self.state.keyword_case = coerce_choice(keyword_case, KEYWORD_CASES, self.state.keyword_case)
        self.save()

    def set_max_rows(self, max_rows: int) -> int:
        self.state.max_rows = bounded_int(max_rows, self.state.max_rows, MIN_MAX_ROWS, MAX_MAX_ROWS)
        self.save()
        return self.state.max_rows

    def record_table_access(self, connection_id: str, db_name: str, table_name: str) -> int:
        key = table_access_key(connection_id, db_name, table_name)
        counts = dict(self.state.table_access_count)
        counts[key] = counts.get(key, 0) + 1
        self.state.table_access_count = counts
        self.save()
        return counts[key]

    def set_table_sort_preference(self, connection_id: str, db_name: str, sort_by: str) -> None:
        if sort_by not in SORT_PREFERENCES:
            raise ValueError(f"Unknown sort preference: {sort_by}")
        prefs = dict(self.state.table_sort_preference)
        prefs[table_sort_key(connection_id, db_name)] = sort_by
        self.state.table_sort_preference = prefs
        self.save()

    def save_query(self, query: SavedQuery) -> None:
        """Insert a saved query, or replace the one with the same id."""
        queries = [q for q in self.state.saved_queries if q.id != query.id]
        if len(queries) == len(self.state.saved_queries):
            queries.append(query)
        else:
            queries = [query if q.id == query.id else q for q in self.state.saved_queries]
        self.state.saved_queries = queries
        self.save()

    def delete_query(self, query_id: str) -> bool:
        queries = [q for q in self.state.saved_queries if q.id != query_id]
        if len(queries) == len(self.state.saved_queries):
            return False
        self.state.saved_queries = queries
        self.save()
        return True
