"""Tests for persisted state migration, merging and the state store."""

from __future__ import annotations

import json
import os
import stat

import pytest

from dbdock.domains.query.store.saved import SavedQuery, sanitize_saved_queries
from dbdock.domains.shell.store.state import (
    CURRENT_VERSION,
    AppState,
    AppStateStore,
    is_legacy_default_appearance,
    load_state_document,
    merge,
    migrate,
)


class TestAppearanceMigration:
    def test_v1_untouched_default_moves_to_new_default(self):
        migrated = migrate({"appearance": {"opacity": 0.95, "blur": 0}}, 1)
        assert migrated["appearance"] == {"opacity": 1.0, "blur": 0}

    def test_v1_missing_appearance_gets_new_default(self):
        assert migrate({}, 0)["appearance"] == {"opacity": 1.0, "blur": 0}

    def test_v1_opacity_within_epsilon_counts_as_default(self):
        migrated = migrate({"appearance": {"opacity": 0.9500000001, "blur": 0}}, 1)
        assert migrated["appearance"]["opacity"] == 1.0

    def test_v1_custom_blur_is_kept(self):
        """Any explicit blur means the user touched the appearance."""
        migrated = migrate({"appearance": {"opacity": 0.95, "blur": 3}}, 1)
        assert migrated["appearance"] == {"opacity": 0.95, "blur": 3}

    def test_v1_custom_opacity_is_kept(self):
        migrated = migrate({"appearance": {"opacity": 0.8, "blur": 0}}, 1)
        assert migrated["appearance"] == {"opacity": 0.8, "blur": 0}

    def test_v2_document_is_not_remapped(self):
        """0.95 in a version 2 document was chosen by the user."""
        migrated = migrate({"appearance": {"opacity": 0.95, "blur": 0}}, 2)
        assert migrated["appearance"] == {"opacity": 0.95, "blur": 0}

    def test_is_legacy_default_appearance(self):
        assert is_legacy_default_appearance(None)
        assert is_legacy_default_appearance({"opacity": "0.95"})
        assert not is_legacy_default_appearance({"opacity": 0.96, "blur": 0})

    def test_migrate_does_not_mutate_input(self):
        original = {"appearance": {"opacity": 0.95, "blur": 0}, "connections": []}
        migrate(original, 1)
        assert original["appearance"] == {"opacity": 0.95, "blur": 0}

    def test_non_mapping_state(self):
        assert migrate(["nope"], 1) == {}


class TestConnectionMigration:
    def test_v2_connections_get_unique_ids(self, make_connection):
        migrated = migrate({"connections": [make_connection("x"), make_connection("x")]}, 2)
        assert [c["id"] for c in migrated["connections"]] == ["x", "x-2"]

    def test_full_document_load(self, make_connection):
        document = {
            "version": 1,
            "state": {
                "connections": [make_connection("x", port=0), make_connection("x", db_type="redis")],
                "appearance": {"opacity": 0.95, "blur": 0},
                "theme": "dark",
            },
        }
        state = load_state_document(document)

        assert [c.id for c in state.connections] == ["x", "x-2"]
        assert state.connections[0].config.port == 5432
        assert state.connections[1].config.port == 6379
        assert state.appearance.opacity == 1.0
        assert state.theme == "dark"

    def test_missing_version_is_treated_as_oldest(self):
        state = load_state_document({"state": {"appearance": {"opacity": 0.95}}})
        assert state.appearance.opacity == 1.0

    def test_current_version_skips_migration(self):
        state = load_state_document({"version": CURRENT_VERSION, "state": {"appearance": {"opacity": 0.95}}})
        assert state.appearance.opacity == 0.95


class TestMerge:
    def test_empty_input_gives_defaults(self):
        assert merge(None) == AppState()
        assert merge("garbage") == AppState()

    def test_every_field_is_sanitized(self, make_connection):
        state = merge(
            {
                "connections": [make_connection(port="abc")],
                "savedQueries": [{"id": "q", "sql": "select 1"}, {"id": "q", "sql": "select 2"}, {"sql": "  "}],
                "theme": "neon",
                "appearance": {"opacity": 5, "blur": 100},
                "sqlFormatOptions": {"keywordCase": "LOWER"},
                "queryOptions": {"maxRows": 0},
                "tableAccessCount": {"c-db-t": 3, "bad": -1, "worse": "x"},
                "tableSortPreference": {"c-db": "frequency", "c-db2": "random"},
            }
        )

        assert state.connections[0].config.port == 5432
        assert [q.id for q in state.saved_queries] == ["q", "q-2"]
        assert state.theme == "light"
        assert (state.appearance.opacity, state.appearance.blur) == (1.0, 0)
        assert state.keyword_case == "lower"
        assert state.max_rows == 5000
        assert state.table_access_count == {"c-db-t": 3}
        assert state.table_sort_preference == {"c-db": "frequency"}

    def test_absent_fields_take_defaults(self):
        defaults = AppState(theme="dark", max_rows=100)
        state = merge({"connections": []}, defaults)
        assert state.theme == "dark"
        assert state.max_rows == 100

    def test_merge_is_idempotent(self, make_connection):
        once = merge({"connections": [make_connection(), make_connection()], "theme": "dark"})
        twice = merge(once.to_dict())
        assert twice == once


class TestSavedQueries:
    def test_defaults_and_aliases(self):
        queries = sanitize_saved_queries(
            [{"sql": "select 1", "connection_id": "c", "createdAt": "1700000000000"}, "junk"]
        )
        assert queries == [
            SavedQuery(id="query-1", name="Query 1", sql="select 1", connection_id="c", created_at=1700000000000)
        ]


class TestAppStateStore:
    def test_missing_file_loads_defaults(self, state_store):
        assert state_store.state == AppState()
        assert not state_store.exists()

    def test_corrupt_file_loads_defaults(self, state_path):
        state_path.write_text("{not json")
        assert AppStateStore(state_path).state == AppState()

    def test_oversized_integer_loads_defaults(self, state_path):
        """Hand-edited numbers beyond the integer digit limit must not crash loading."""
        state_path.write_text('{"version": 3, "state": {"queryOptions": {"maxRows": ' + "9" * 5000 + "}}}")
        assert AppStateStore(state_path).state.max_rows == 5000

    def test_unreadable_path_loads_defaults(self, state_path):
        state_path.mkdir()
        assert AppStateStore(state_path).state == AppState()

    def test_save_writes_versioned_document(self, state_store, state_path):
        state_store.set_theme("dark")

        document = json.loads(state_path.read_text())
        assert document["version"] == CURRENT_VERSION
        assert document["state"]["theme"] == "dark"
        assert document["state"]["queryOptions"] == {"maxRows": 5000}

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_file_is_owner_only(self, state_store, state_path):
        state_store.save()
        assert stat.S_IMODE(state_path.stat().st_mode) == 0o600

    def test_roundtrip(self, state_store, state_path, make_connection):
        state_store.state.connections = [c for c in merge({"connections": [make_connection()]}).connections]
        state_store.set_appearance(opacity=0.8)
        state_store.set_keyword_case("lower")

        reloaded = AppStateStore(state_path).state
        assert reloaded == state_store.state
        assert reloaded.appearance.opacity == 0.8
        assert reloaded.appearance.blur == 0

    def test_v2_file_is_upgraded_on_save(self, state_path, make_connection):
        state_path.write_text(
            json.dumps({"version": 2, "state": {"connections": [make_connection("x"), make_connection("x")]}})
        )
        store = AppStateStore(state_path)
        store.save()

        document = json.loads(state_path.read_text())
        assert document["version"] == 3
        assert [c["id"] for c in document["state"]["connections"]] == ["x", "x-2"]

    def test_invalid_settings_are_ignored(self, state_store):
        state_store.set_theme("neon")
        assert state_store.set_max_rows(0) == 5000
        assert state_store.set_max_rows("250") == 250
        appearance = state_store.set_appearance(opacity=0.01, blur=10)
        assert (appearance.opacity, appearance.blur) == (1.0, 10)
        assert state_store.state.theme == "light"

    def test_table_access_and_sort(self, state_store, state_path):
        assert state_store.record_table_access("c", "db", "users") == 1
        assert state_store.record_table_access("c", "db", "users") == 2
        state_store.set_table_sort_preference("c", "db", "frequency")
        with pytest.raises(ValueError):
            state_store.set_table_sort_preference("c", "db", "size")

        reloaded = AppStateStore(state_path).state
        assert reloaded.table_access_count == {"c-db-users": 2}
        assert reloaded.table_sort_preference == {"c-db": "frequency"}

    def test_saved_query_upsert_and_delete(self, state_store):
        state_store.save_query(SavedQuery(id="q1", name="One", sql="select 1"))
        state_store.save_query(SavedQuery(id="q2", name="Two", sql="select 2"))
        state_store.save_query(SavedQuery(id="q1", name="One v2", sql="select 11"))

        assert [(q.id, q.name) for q in state_store.state.saved_queries] == [("q1", "One v2"), ("q2", "Two")]
        assert state_store.delete_query("q1") is True
        assert state_store.delete_query("q1") is False

    def test_reload_picks_up_external_changes(self, state_store, state_path):
        state_store.set_theme("dark")
        state_path.write_text(json.dumps({"version": 3, "state": {"theme": "light"}}))
        assert state_store.reload().theme == "light"

    def test_state_path_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DBDOCK_STATE_PATH", str(tmp_path / "custom.json"))
        assert AppStateStore.get_instance().file_path == tmp_path / "custom.json"
