"""Tests for the saved-connection store."""

from __future__ import annotations

import json

import pytest

from dbdock.domains.connections.app.network import NetworkPathService
from dbdock.domains.connections.app.dial_registry import DialPathRegistry, InMemoryNetworkRegistry
from dbdock.domains.connections.domain.config import SavedConnection
from dbdock.domains.connections.providers.exceptions import ImportFormatError
from dbdock.domains.connections.store.connections import ConnectionStore


class TestCrud:
    def test_empty_store(self, connection_store):
        assert connection_store.load_all() == []
        assert connection_store.get_by_id("missing") is None

    def test_add_persists_sanitized_connection(self, connection_store, state_path, make_connection):
        saved = connection_store.add(make_connection(port="0", password="pw", savePassword=False))

        assert saved.config.port == 5432
        assert saved.config.password == ""

        document = json.loads(state_path.read_text())
        assert document["version"] == 3
        stored = document["state"]["connections"][0]
        assert stored["id"] == "pg-main"
        assert stored["config"]["port"] == 5432
        assert stored["config"]["password"] == ""

    def test_add_suffixes_colliding_id(self, connection_store, make_connection):
        connection_store.add(make_connection("x", "A"))
        second = connection_store.add(make_connection("x", "B"))

        assert second.id == "x-2"
        assert [c.id for c in connection_store.load_all()] == ["x", "x-2"]

    def test_suffixed_long_id_survives_reload(self, connection_store, state_store, make_connection):
        long_id = "p" * 128
        connection_store.add(make_connection(long_id))
        second = connection_store.add(make_connection(long_id, "Second"))

        assert len(second.id) == 128
        state_store.reload()
        assert connection_store.get_by_id(second.id).name == "Second"

    def test_add_accepts_model(self, connection_store):
        saved = connection_store.add(SavedConnection(id="m", name="Model"))
        assert connection_store.get_by_id("m") == saved

    def test_add_without_id(self, connection_store, make_connection):
        connection_store.add(make_connection())
        raw = make_connection()
        del raw["id"]
        saved = connection_store.add(raw)
        assert saved.id == "conn-2"

    def test_update_replaces_by_id(self, connection_store, make_connection):
        connection_store.add(make_connection())
        updated = connection_store.update(make_connection(name="Renamed", db_type="redis", redisDB=4))

        assert updated.name == "Renamed"
        assert connection_store.get_by_id("pg-main").config.redis_db == 4
        assert connection_store.list_names() == ["Renamed"]

    def test_update_missing(self, connection_store, make_connection):
        with pytest.raises(ValueError):
            connection_store.update(make_connection("ghost"))

    def test_remove(self, connection_store, make_connection):
        connection_store.add(make_connection())
        assert connection_store.remove("pg-main") is True
        assert connection_store.remove("pg-main") is False
        assert connection_store.load_all() == []

    def test_changes_survive_reload(self, state_store, state_path, make_connection):
        from dbdock.domains.shell.store.state import AppStateStore

        ConnectionStore(state_store).add(make_connection())
        reloaded = ConnectionStore(AppStateStore(state_path))
        assert [c.id for c in reloaded.load_all()] == ["pg-main"]

    def test_singleton(self):
        assert ConnectionStore.get_instance() is ConnectionStore.get_instance()


class TestRemovalTeardown:
    def test_listener_receives_removed_id(self, connection_store, make_connection):
        removed: list[str] = []
        connection_store.on_remove(removed.append)
        connection_store.add(make_connection())

        connection_store.remove("missing")
        connection_store.remove("pg-main")

        assert removed == ["pg-main"]

    def test_removing_connection_closes_its_tunnel(self, connection_store, make_connection):
        closed: list[str] = []

        class Provider:
            def __init__(self, ssh_config):
                self.host = ssh_config.host

            def dial(self, address, timeout=None):
                return None

            def close(self):
                closed.append(self.host)

        service = NetworkPathService(DialPathRegistry(InMemoryNetworkRegistry()), Provider)
        connection_store.on_remove(service.close_connection)
        saved = connection_store.add(
            make_connection(useSSH=True, ssh={"host": "bastion", "user": "ops", "password": "pw"})
        )
        path = service.open(saved.id, saved.config)

        connection_store.remove(saved.id)
        assert closed == []

        service.release(path)
        assert closed == ["bastion"]
        assert service.registry.names() == []

    def test_removing_connection_closes_unused_tunnel(self, connection_store, make_connection):
        closed: list[str] = []

        class Provider:
            def __init__(self, ssh_config):
                pass

            def dial(self, address, timeout=None):
                return None

            def close(self):
                closed.append("closed")

        service = NetworkPathService(DialPathRegistry(InMemoryNetworkRegistry()), Provider)
        connection_store.on_remove(service.close_connection)
        saved = connection_store.add(
            make_connection(useSSH=True, ssh={"host": "bastion", "user": "ops", "password": "pw"})
        )
        path = service.open(saved.id, saved.config)
        service.registry.release(path.network)

        connection_store.remove(saved.id)

        assert closed == ["closed"]


class TestImportExport:
    def test_export_import_roundtrip(self, connection_store, make_connection, tmp_path):
        from dbdock.domains.shell.store.state import AppStateStore

        connection_store.add(make_connection("a", "A", includeDatabases=["app"]))
        connection_store.add(make_connection("b", "B", db_type="redis", host="cache", redisDB=2))
        payload = connection_store.export_json()

        target = ConnectionStore(AppStateStore(tmp_path / "other.json"))
        added = target.import_json(payload)

        assert [c.to_dict() for c in added] == [c.to_dict() for c in connection_store.load_all()]

    def test_import_merges_and_renames_collisions(self, connection_store, make_connection):
        connection_store.add(make_connection("a"))
        added = connection_store.import_json(json.dumps([make_connection("a", "Imported"), make_connection("c")]))

        assert [c.id for c in added] == ["a-2", "c"]
        assert [c.id for c in connection_store.load_all()] == ["a", "a-2", "c"]

    def test_import_rejects_non_array(self, connection_store):
        with pytest.raises(ImportFormatError):
            connection_store.import_json('{"id": "a"}')
        assert connection_store.load_all() == []
