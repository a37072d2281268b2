"""Normalization of untrusted connection data.

Everything read back from disk, from an import file, or from the connection
form passes through here. The functions never raise on malformed input:
each accessor has an explicit fallback, so the worst case is a default value
silently replacing a broken one.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping
from typing import Any

from dbdock.domains.connections.domain.config import (
    DEFAULT_SSH_PORT,
    DEFAULT_TIMEOUT_SECONDS,
    ConnectionConfig,
    SavedConnection,
    SSHConfig,
)
from dbdock.domains.connections.domain.types import (
    MYSQL_FAMILY,
    DatabaseType,
    default_port,
    get_type_spec,
    normalize_type,
)

logger = logging.getLogger(__name__)

MAX_PORT = 65535
MIN_TIMEOUT_SECONDS = 1
MAX_TIMEOUT_SECONDS = 3600
MIN_REDIS_DB = 0
MAX_REDIS_DB = 15

MAX_ID_LENGTH = 128
MAX_NAME_LENGTH = 256
MAX_HOST_LENGTH = 512
MAX_FIELD_LENGTH = 512
MAX_PATH_LENGTH = 4096
MAX_URI_LENGTH = 4096
MAX_DSN_LENGTH = 4096
MAX_DRIVER_LENGTH = 128

MAX_HOST_ENTRIES = 64
MAX_HOST_ENTRY_LENGTH = 512
MAX_INCLUDE_DATABASES = 1024
MAX_DATABASE_NAME_LENGTH = 256
MAX_INCLUDE_REDIS_DATABASES = 16

MONGO_TOPOLOGIES = ("single", "replica")
MONGO_READ_PREFERENCES = ("primary", "primaryPreferred", "secondary", "secondaryPreferred", "nearest")
MONGO_AUTH_MECHANISMS = ("", "SCRAM-SHA-1", "SCRAM-SHA-256", "MONGODB-X509", "MONGODB-AWS", "PLAIN", "GSSAPI")

# Host tokens end up inside driver dial strings.
_UNSAFE_HOST_CHARS = re.compile(r"[()\\/\s]")

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off"})


# ---------------------------------------------------------------------------
# Typed accessors


def as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def pick(data: Mapping[str, Any], *keys: str) -> Any:
    """Return the value of the first key present (current name first, then legacy aliases)."""
    for key in keys:
        if key in data:
            return data[key]
    return None


def coerce_str(
    value: Any,
    fallback: str = "",
    *,
    max_length: int | None = None,
    strip: bool = True,
) -> str:
    """Coerce scalars to a string, or return the fallback.

    Numbers and booleans are stringified first; other types, blank strings
    and strings longer than ``max_length`` yield ``fallback``.
    """
    if isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, int):
        text = str(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            return fallback
        text = str(int(value)) if value.is_integer() else repr(value)
    elif isinstance(value, str):
        text = value
    else:
        return fallback

    if strip:
        text = text.strip()
    if not text:
        return fallback
    if max_length is not None and len(text) > max_length:
        return fallback
    return text


def parse_int(value: Any) -> int | None:
    """Parse a number, truncating toward zero. Booleans are not numbers."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return math.trunc(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return math.trunc(number) if math.isfinite(number) else None
    return None


def parse_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def bounded_int(value: Any, fallback: int, minimum: int, maximum: int) -> int:
    """Parse an integer; anything unparsable or outside [minimum, maximum] becomes the fallback.

    Out-of-range values are rejected, not clamped.
    """
    number = parse_int(value)
    if number is None or number < minimum or number > maximum:
        return fallback
    return number


def bounded_float(value: Any, fallback: float, minimum: float, maximum: float) -> float:
    number = parse_float(value)
    if number is None or number < minimum or number > maximum:
        return fallback
    return number


def coerce_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return fallback
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return fallback


def coerce_choice(value: Any, choices: Iterable[str], fallback: str) -> str:
    """Match a string case-insensitively against ``choices``, returning the canonical spelling."""
    text = coerce_str(value).lower()
    for choice in choices:
        if choice.lower() == text:
            return choice
    return fallback


def sanitize_port(value: Any, db_type: str) -> int:
    return bounded_int(value, default_port(db_type), 1, MAX_PORT)


def _dedupe(items: Iterable[Any], max_items: int) -> list[Any]:
    seen: set[Any] = set()
    result: list[Any] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
        if len(result) >= max_items:
            break
    return result


def sanitize_string_list(
    value: Any,
    *,
    max_items: int,
    max_length: int,
    reject: re.Pattern[str] | None = None,
) -> list[str]:
    """Trim, filter and de-duplicate a list of strings, keeping first occurrences in order."""
    if not isinstance(value, list):
        return []

    def entries() -> Iterable[str]:
        for raw in value:
            text = coerce_str(raw, max_length=max_length)
            if not text:
                continue
            if reject is not None and reject.search(text):
                continue
            yield text

    return _dedupe(entries(), max_items)


def sanitize_host_list(value: Any) -> list[str]:
    return sanitize_string_list(
        value,
        max_items=MAX_HOST_ENTRIES,
        max_length=MAX_HOST_ENTRY_LENGTH,
        reject=_UNSAFE_HOST_CHARS,
    )


def sanitize_int_list(value: Any, *, minimum: int, maximum: int, max_items: int) -> list[int]:
    if not isinstance(value, list):
        return []

    def entries() -> Iterable[int]:
        for raw in value:
            number = parse_int(raw)
            if number is None or number < minimum or number > maximum:
                continue
            yield number

    return _dedupe(entries(), max_items)


def unique_id(candidate: str, ordinal: int, taken: set[str], max_length: int = MAX_ID_LENGTH) -> str:
    """Return ``candidate`` or, if taken, the first free ``{candidate}-{n}`` with n >= ordinal.

    The candidate is shortened so the suffixed id still fits ``max_length``.
    """
    if candidate not in taken:
        return candidate
    suffix = max(ordinal, 2)
    while True:
        tail = f"-{suffix}"
        resolved = candidate[: max(max_length - len(tail), 0)] + tail
        if resolved not in taken:
            return resolved
        suffix += 1


# ---------------------------------------------------------------------------
# Record sanitizers


def sanitize_ssh_config(value: Any) -> SSHConfig:
    data = as_mapping(value)
    return SSHConfig(
        host=coerce_str(data.get("host"), max_length=MAX_HOST_LENGTH),
        port=bounded_int(data.get("port"), DEFAULT_SSH_PORT, 1, MAX_PORT),
        user=coerce_str(pick(data, "user", "username"), max_length=MAX_FIELD_LENGTH),
        password=coerce_str(data.get("password"), strip=False),
        key_path=coerce_str(pick(data, "keyPath", "key_path"), max_length=MAX_PATH_LENGTH),
    )


def sanitize_connection_config(value: Any) -> ConnectionConfig:
    """Turn an arbitrary value into a valid ConnectionConfig."""
    data = as_mapping(value)
    db_type = normalize_type(data.get("type"))
    save_password = coerce_bool(pick(data, "savePassword", "save_password"), True)
    # File databases have no network path to tunnel.
    use_ssh = coerce_bool(pick(data, "useSSH", "use_ssh"), False) and get_type_spec(db_type).supports_ssh

    def secret(*keys: str) -> str:
        if not save_password:
            return ""
        return coerce_str(pick(data, *keys), strip=False)

    config = ConnectionConfig(
        type=db_type,
        host=coerce_str(pick(data, "host", "server"), max_length=MAX_HOST_LENGTH),
        port=sanitize_port(data.get("port"), db_type),
        user=coerce_str(pick(data, "user", "username"), max_length=MAX_FIELD_LENGTH),
        password=secret("password"),
        save_password=save_password,
        database=coerce_str(data.get("database"), max_length=MAX_FIELD_LENGTH),
        use_ssh=use_ssh,
        ssh=sanitize_ssh_config(data.get("ssh")) if use_ssh else None,
        uri=coerce_str(data.get("uri"), max_length=MAX_URI_LENGTH),
        timeout=bounded_int(data.get("timeout"), DEFAULT_TIMEOUT_SECONDS, MIN_TIMEOUT_SECONDS, MAX_TIMEOUT_SECONDS),
    )

    if db_type == DatabaseType.MONGODB.value:
        config.hosts = sanitize_host_list(data.get("hosts"))
        config.topology = coerce_choice(data.get("topology"), MONGO_TOPOLOGIES, "single")
        config.replica_set = coerce_str(data.get("replicaSet"), max_length=MAX_FIELD_LENGTH)
        config.auth_source = coerce_str(data.get("authSource"), max_length=MAX_FIELD_LENGTH)
        config.read_preference = coerce_choice(data.get("readPreference"), MONGO_READ_PREFERENCES, "primary")
        config.mongo_srv = coerce_bool(data.get("mongoSrv"), False)
        config.mongo_auth_mechanism = coerce_choice(data.get("mongoAuthMechanism"), MONGO_AUTH_MECHANISMS, "")
        config.mongo_replica_user = coerce_str(data.get("mongoReplicaUser"), max_length=MAX_FIELD_LENGTH)
        config.mongo_replica_password = secret("mongoReplicaPassword")
    elif db_type in MYSQL_FAMILY:
        config.mysql_replica_user = coerce_str(data.get("mysqlReplicaUser"), max_length=MAX_FIELD_LENGTH)
        config.mysql_replica_password = secret("mysqlReplicaPassword")
    elif db_type == DatabaseType.REDIS.value:
        config.redis_db = bounded_int(pick(data, "redisDB", "redis_db"), MIN_REDIS_DB, MIN_REDIS_DB, MAX_REDIS_DB)
    elif db_type == DatabaseType.CUSTOM.value:
        config.driver = coerce_str(data.get("driver"), max_length=MAX_DRIVER_LENGTH)
        config.dsn = coerce_str(data.get("dsn"), max_length=MAX_DSN_LENGTH)

    return config


def fallback_name(config: ConnectionConfig, ordinal: int) -> str:
    if config.host:
        return f"{config.type}-{config.host}"
    return f"Connection {ordinal}"


def sanitize_saved_connection(value: Any, ordinal: int = 1) -> SavedConnection:
    """Sanitize one saved connection; ``ordinal`` is its 1-based position in the collection."""
    data = as_mapping(value)
    raw_config = data.get("config")
    if not isinstance(raw_config, Mapping) and ("type" in data or "host" in data):
        # Flat records from before the config was nested.
        raw_config = data
    config = sanitize_connection_config(raw_config)

    return SavedConnection(
        id=coerce_str(data.get("id"), f"conn-{ordinal}", max_length=MAX_ID_LENGTH),
        name=coerce_str(data.get("name"), max_length=MAX_NAME_LENGTH) or fallback_name(config, ordinal),
        config=config,
        include_databases=sanitize_string_list(
            data.get("includeDatabases"),
            max_items=MAX_INCLUDE_DATABASES,
            max_length=MAX_DATABASE_NAME_LENGTH,
        ),
        include_redis_databases=sanitize_int_list(
            data.get("includeRedisDatabases"),
            minimum=MIN_REDIS_DB,
            maximum=MAX_REDIS_DB,
            max_items=MAX_INCLUDE_REDIS_DATABASES,
        ),
    )


def sanitize_connections(value: Any, taken_ids: Iterable[str] = ()) -> list[SavedConnection]:
    """Sanitize a whole collection and make ids unique.

    Non-list input yields an empty list and non-object entries are skipped.
    Ids already in ``taken_ids`` count as collisions too, which is how imports
    are merged into an existing store.
    """
    if not isinstance(value, list):
        if value is not None:
            logger.debug("Discarding non-list connection collection of type %s", type(value).__name__)
        return []

    taken = set(taken_ids)
    result: list[SavedConnection] = []
    for index, raw in enumerate(value):
        ordinal = index + 1
        if not isinstance(raw, Mapping):
            logger.debug("Skipping non-object connection entry at position %d", ordinal)
            continue
        conn = sanitize_saved_connection(raw, ordinal)
        resolved = unique_id(conn.id, ordinal, taken)
        if resolved != conn.id:
            logger.info("Connection id %r is already in use, renamed to %r", conn.id, resolved)
            conn.id = resolved
        taken.add(conn.id)
        result.append(conn)
    return result
