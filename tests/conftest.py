"""Pytest fixtures for dbdock tests."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest

_TEST_CONFIG_DIR = Path(tempfile.mkdtemp(prefix="dbdock-test-config-"))
os.environ.setdefault("DBDOCK_CONFIG_DIR", str(_TEST_CONFIG_DIR))
os.environ.setdefault("DBDOCK_LOG_DIR", str(_TEST_CONFIG_DIR / "logs"))


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Ensure store singletons and logging handlers do not leak between tests."""
    from dbdock.domains.connections.store.connections import ConnectionStore
    from dbdock.domains.shell.store.state import AppStateStore
    from dbdock.shared.core.logs import reset_logging

    ConnectionStore.reset_instance()
    AppStateStore.reset_instance()
    yield
    ConnectionStore.reset_instance()
    AppStateStore.reset_instance()
    reset_logging()


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state.json"


@pytest.fixture
def state_store(state_path: Path):
    from dbdock.domains.shell.store.state import AppStateStore

    return AppStateStore(state_path)


@pytest.fixture
def connection_store(state_store):
    from dbdock.domains.connections.store.connections import ConnectionStore

    return ConnectionStore(state_store)


def _make_connection(
    conn_id: str = "pg-main",
    name: str = "Main",
    *,
    db_type: str = "postgres",
    host: str = "db.example.com",
    **config,
) -> dict:
    """Build a raw saved-connection dict the way the connection form submits it."""
    return {
        "id": conn_id,
        "name": name,
        "config": {"type": db_type, "host": host, **config},
    }


@pytest.fixture
def make_connection():
    return _make_connection

