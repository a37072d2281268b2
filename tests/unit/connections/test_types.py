"""Tests for connection types and domain models."""

from __future__ import annotations

import pytest

from dbdock.domains.connections.domain.config import ConnectionConfig, SavedConnection, SSHConfig, format_address
from dbdock.domains.connections.domain.types import (
    DatabaseType,
    default_port,
    get_display_name,
    get_supported_db_types,
    is_file_based,
    normalize_type,
)


class TestDefaultPort:
    @pytest.mark.parametrize(
        ("db_type", "port"),
        [
            ("mysql", 3306),
            ("mariadb", 3306),
            ("sphinx", 9306),
            ("postgres", 5432),
            ("redis", 6379),
            ("tdengine", 6041),
            ("oracle", 1521),
            ("dameng", 5236),
            ("kingbase", 54321),
            ("sqlserver", 1433),
            ("mongodb", 27017),
            ("highgo", 5866),
            ("vastbase", 5432),
            ("sqlite", 3306),
            ("custom", 3306),
        ],
    )
    def test_known_types(self, db_type, port):
        assert default_port(db_type) == port

    def test_unknown_type_falls_back(self):
        assert default_port("foxpro") == 3306
        assert default_port(None) == 3306

    def test_lookup_ignores_case(self):
        assert default_port(" Postgres ") == 5432


class TestNormalizeType:
    def test_every_enum_member_is_supported(self):
        assert sorted(get_supported_db_types()) == sorted(t.value for t in DatabaseType)

    def test_normalizes_case_and_whitespace(self):
        assert normalize_type(" MongoDB ") == "mongodb"

    @pytest.mark.parametrize("raw", [None, 5, "", "foxpro", ["mysql"]])
    def test_invalid_types_fall_back_to_mysql(self, raw):
        assert normalize_type(raw) == "mysql"

    def test_file_based_and_display_name(self):
        assert is_file_based("sqlite")
        assert not is_file_based("postgres")
        assert get_display_name("sqlserver") == "SQL Server"


class TestModels:
    def test_format_address_brackets_ipv6(self):
        assert format_address("::1", 5432) == "[::1]:5432"
        assert format_address("db", 5432) == "db:5432"

    def test_config_to_dict_uses_wire_keys(self):
        config = ConnectionConfig(type="redis", host="cache", port=6379, redis_db=2)
        data = config.to_dict()
        assert data["redisDB"] == 2
        assert data["savePassword"] is True
        assert data["useSSH"] is False
        assert "ssh" not in data

    def test_config_to_dict_includes_ssh_only_when_enabled(self):
        ssh = SSHConfig(host="jump", user="ops", key_path="/k")
        assert "ssh" not in ConnectionConfig(ssh=ssh).to_dict()
        data = ConnectionConfig(use_ssh=True, ssh=ssh).to_dict()
        assert data["ssh"] == {"host": "jump", "port": 22, "user": "ops", "password": "", "keyPath": "/k"}

    def test_from_dict_sanitizes(self):
        config = ConnectionConfig.from_dict({"type": "POSTGRES", "port": "0"})
        assert config.type == "postgres"
        assert config.port == 5432
        assert config.get_db_type() is DatabaseType.POSTGRES

    def test_saved_connection_omits_empty_allow_lists(self):
        conn = SavedConnection(id="a", name="A")
        assert set(conn.to_dict()) == {"id", "name", "config"}
        conn.include_redis_databases = [1]
        assert conn.to_dict()["includeRedisDatabases"] == [1]

    def test_saved_connection_from_dict(self):
        conn = SavedConnection.from_dict({"name": "X"}, ordinal=3)
        assert conn.id == "conn-3"
        assert conn.config == ConnectionConfig()
