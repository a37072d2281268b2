"""Connection store for managing saved database connections."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from dbdock.domains.connections.app.sanitize import (
    coerce_str,
    sanitize_connections,
    sanitize_saved_connection,
    unique_id,
)
from dbdock.domains.connections.domain.config import SavedConnection

if TYPE_CHECKING:
    from dbdock.domains.shell.store.state import AppStateStore

logger = logging.getLogger(__name__)

RemovalListener = Callable[[str], Any]


def _as_raw(connection: SavedConnection | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(connection, SavedConnection):
        return connection.to_dict()
    if isinstance(connection, Mapping):
        return dict(connection)
    return {}


class ConnectionStore:
    """CRUD over the saved connections held in the app state.

    Connections are stored under ``connections`` in the state document.
    Every mutation sanitizes its input, replaces the whole list and persists.
    Listeners registered with ``on_remove`` are called with the id of each
    removed connection (used to tear down its tunnels).
    """

    _instance: ConnectionStore | None = None

    def __init__(self, state_store: AppStateStore | None = None) -> None:
        self._state_store = state_store
        self._removal_listeners: list[RemovalListener] = []

    @property
    def state_store(self) -> AppStateStore:
        if self._state_store is None:
            from dbdock.domains.shell.store.state import AppStateStore

            self._state_store = AppStateStore.get_instance()
        return self._state_store

    @classmethod
    def get_instance(cls) -> ConnectionStore:
        """Get the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None

    def on_remove(self, listener: RemovalListener) -> None:
        self._removal_listeners.append(listener)

    def load_all(self) -> list[SavedConnection]:
        """Return the active connections (a copy of the list)."""
        return list(self.state_store.state.connections)

    def get_by_id(self, connection_id: str) -> SavedConnection | None:
        for conn in self.state_store.state.connections:
            if conn.id == connection_id:
                return conn
        return None

    def list_names(self) -> list[str]:
        return [c.name for c in self.state_store.state.connections]

    def _commit(self, connections: list[SavedConnection]) -> None:
        state = self.state_store.state
        state.connections = connections
        self.state_store.save(state)

    def add(self, connection: SavedConnection | Mapping[str, Any]) -> SavedConnection:
        """Append a connection, sanitizing it and suffixing its id on collision.

        Returns:
            The stored (sanitized) connection.
        """
        connections = self.load_all()
        ordinal = len(connections) + 1
        saved = sanitize_saved_connection(_as_raw(connection), ordinal)
        saved.id = unique_id(saved.id, ordinal, {c.id for c in connections})
        connections.append(saved)
        self._commit(connections)
        logger.info("Added connection %s (%s)", saved.id, saved.config.type)
        return saved

    def add_many(self, connections: list[SavedConnection]) -> list[SavedConnection]:
        """Append several connections, resolving id collisions against the store."""
        existing = self.load_all()
        added = sanitize_connections(
            [c.to_dict() for c in connections],
            taken_ids=[c.id for c in existing],
        )
        self._commit(existing + added)
        logger.info("Added %d connection(s)", len(added))
        return added

    def update(self, connection: SavedConnection | Mapping[str, Any]) -> SavedConnection:
        """Replace the connection with the same id.

        Raises:
            ValueError: If no connection has that id.
        """
        raw = _as_raw(connection)
        target_id = coerce_str(raw.get("id"))
        connections = self.load_all()
        for i, existing in enumerate(connections):
            if existing.id == target_id:
                updated = sanitize_saved_connection(raw, i + 1)
                connections[i] = updated
                self._commit(connections)
                logger.info("Updated connection %s", updated.id)
                return updated
        raise ValueError(f"Connection '{target_id}' not found")

    def remove(self, connection_id: str) -> bool:
        """Delete a connection by id.

        Returns:
            True if deleted, False if not found.
        """
        connections = self.load_all()
        remaining = [c for c in connections if c.id != connection_id]
        if len(remaining) == len(connections):
            return False
        self._commit(remaining)
        logger.info("Removed connection %s", connection_id)
        for listener in list(self._removal_listeners):
            listener(connection_id)
        return True

    def import_json(self, text: str) -> list[SavedConnection]:
        """Import a JSON array of connections.

        Raises:
            ImportFormatError: If ``text`` is not a JSON array.
        """
        from dbdock.domains.connections.app.transfer import import_connections

        return self.add_many(import_connections(text))

    def export_json(self) -> str:
        from dbdock.domains.connections.app.transfer import export_connections

        return export_connections(self.load_all())
