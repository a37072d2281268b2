"""Connection domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from dbdock.domains.connections.domain.types import (
    DEFAULT_DB_TYPE,
    FALLBACK_PORT,
    MYSQL_FAMILY,
    DatabaseType,
)

DEFAULT_SSH_PORT = 22
DEFAULT_TIMEOUT_SECONDS = 30


def format_address(host: str, port: int) -> str:
    """Join host and port, bracketing bare IPv6 literals."""
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass
class SSHConfig:
    """SSH jump host used to tunnel a database connection."""

    host: str = ""
    port: int = DEFAULT_SSH_PORT
    user: str = ""
    password: str = ""
    key_path: str = ""

    @property
    def has_auth(self) -> bool:
        return bool(self.password or self.key_path)

    @property
    def address(self) -> str:
        return format_address(self.host, self.port)

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "keyPath": self.key_path,
        }


@dataclass
class ConnectionConfig:
    """How to reach one database.

    Type-specific fields are only meaningful for their own type; the
    sanitizer resets them for every other type and ``to_dict`` leaves them
    out.
    """

    type: str = DEFAULT_DB_TYPE
    host: str = ""
    port: int = FALLBACK_PORT
    user: str = ""
    password: str = ""
    save_password: bool = True
    database: str = ""
    use_ssh: bool = False
    ssh: SSHConfig | None = None
    uri: str = ""
    timeout: int = DEFAULT_TIMEOUT_SECONDS
    # mongodb
    hosts: list[str] = field(default_factory=list)
    topology: str = "single"
    replica_set: str = ""
    auth_source: str = ""
    read_preference: str = "primary"
    mongo_srv: bool = False
    mongo_auth_mechanism: str = ""
    mongo_replica_user: str = ""
    mongo_replica_password: str = ""
    # mysql / mariadb
    mysql_replica_user: str = ""
    mysql_replica_password: str = ""
    # redis
    redis_db: int = 0
    # custom
    driver: str = ""
    dsn: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | Any) -> ConnectionConfig:
        """Build a config from untrusted input, repairing anything invalid."""
        from dbdock.domains.connections.app.sanitize import sanitize_connection_config

        return sanitize_connection_config(data)

    @property
    def address(self) -> str:
        return format_address(self.host, self.port)

    def get_db_type(self) -> DatabaseType:
        try:
            return DatabaseType(self.type)
        except ValueError:
            return DatabaseType.MYSQL

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "savePassword": self.save_password,
            "database": self.database,
            "useSSH": self.use_ssh,
        }
        if self.use_ssh and self.ssh is not None:
            data["ssh"] = self.ssh.to_dict()
        data["uri"] = self.uri
        data["timeout"] = self.timeout

        if self.type == DatabaseType.MONGODB.value:
            data.update(
                {
                    "hosts": list(self.hosts),
                    "topology": self.topology,
                    "replicaSet": self.replica_set,
                    "authSource": self.auth_source,
                    "readPreference": self.read_preference,
                    "mongoSrv": self.mongo_srv,
                    "mongoAuthMechanism": self.mongo_auth_mechanism,
                    "mongoReplicaUser": self.mongo_replica_user,
                    "mongoReplicaPassword": self.mongo_replica_password,
                }
            )
        elif self.type in MYSQL_FAMILY:
            data["mysqlReplicaUser"] = self.mysql_replica_user
            data["mysqlReplicaPassword"] = self.mysql_replica_password
        elif self.type == DatabaseType.REDIS.value:
            data["redisDB"] = self.redis_db
        elif self.type == DatabaseType.CUSTOM.value:
            data["driver"] = self.driver
            data["dsn"] = self.dsn
        return data


@dataclass
class SavedConnection:
    """A named, persisted connection."""

    id: str
    name: str
    config: ConnectionConfig = field(default_factory=ConnectionConfig)
    include_databases: list[str] = field(default_factory=list)
    include_redis_databases: list[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | Any, ordinal: int = 1) -> SavedConnection:
        from dbdock.domains.connections.app.sanitize import sanitize_saved_connection

        return sanitize_saved_connection(data, ordinal)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "config": self.config.to_dict(),
        }
        if self.include_databases:
            data["includeDatabases"] = list(self.include_databases)
        if self.include_redis_databases:
            data["includeRedisDatabases"] = list(self.include_redis_databases)
        return data
