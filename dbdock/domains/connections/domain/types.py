"""Supported connection types and their defaults.

``default_port`` and ``normalize_type`` are the only places that decide type
and port fallbacks; every other module goes through them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class DatabaseType(str, Enum):
    MYSQL = "mysql"
    MARIADB = "mariadb"
    SPHINX = "sphinx"
    POSTGRES = "postgres"
    REDIS = "redis"
    TDENGINE = "tdengine"
    ORACLE = "oracle"
    DAMENG = "dameng"
    KINGBASE = "kingbase"
    SQLSERVER = "sqlserver"
    MONGODB = "mongodb"
    HIGHGO = "highgo"
    VASTBASE = "vastbase"
    SQLITE = "sqlite"
    CUSTOM = "custom"


DEFAULT_DB_TYPE = DatabaseType.MYSQL.value
FALLBACK_PORT = 3306


@dataclass(frozen=True)
class TypeSpec:
    db_type: str
    display_name: str
    default_port: int = FALLBACK_PORT
    is_file_based: bool = False
    supports_ssh: bool = True


_TYPE_SPECS: dict[str, TypeSpec] = {
    spec.db_type: spec
    for spec in (
        TypeSpec("mysql", "MySQL", 3306),
        TypeSpec("mariadb", "MariaDB", 3306),
        TypeSpec("sphinx", "Sphinx", 9306),
        TypeSpec("postgres", "PostgreSQL", 5432),
        TypeSpec("redis", "Redis", 6379),
        TypeSpec("tdengine", "TDengine", 6041),
        TypeSpec("oracle", "Oracle", 1521),
        TypeSpec("dameng", "Dameng", 5236),
        TypeSpec("kingbase", "Kingbase", 54321),
        TypeSpec("sqlserver", "SQL Server", 1433),
        TypeSpec("mongodb", "MongoDB", 27017),
        TypeSpec("highgo", "HighGo", 5866),
        TypeSpec("vastbase", "Vastbase", 5432),
        TypeSpec("sqlite", "SQLite", is_file_based=True, supports_ssh=False),
        TypeSpec("custom", "Custom"),
    )
}

# Types that share the MySQL wire protocol and its read-replica settings.
MYSQL_FAMILY = frozenset({"mysql", "mariadb"})


def get_supported_db_types() -> list[str]:
    return list(_TYPE_SPECS.keys())


def get_type_spec(db_type: str) -> TypeSpec:
    return _TYPE_SPECS.get(db_type) or _TYPE_SPECS[DEFAULT_DB_TYPE]


def normalize_type(raw: Any) -> str:
    """Lower-case and validate a connection type, falling back to mysql."""
    if not isinstance(raw, str):
        return DEFAULT_DB_TYPE
    value = raw.strip().lower()
    return value if value in _TYPE_SPECS else DEFAULT_DB_TYPE


def default_port(db_type: Any) -> int:
    """Return the canonical port for a connection type (3306 when unknown)."""
    if not isinstance(db_type, str):
        return FALLBACK_PORT
    spec = _TYPE_SPECS.get(db_type.strip().lower())
    return spec.default_port if spec else FALLBACK_PORT


def is_file_based(db_type: str) -> bool:
    return get_type_spec(db_type).is_file_based


def get_display_name(db_type: str) -> str:
    spec = _TYPE_SPECS.get(db_type)
    return spec.display_name if spec else db_type
