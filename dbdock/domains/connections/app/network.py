"""Resolve the network path a database driver should connect through.

``NetworkPathService`` owns the tunnels it opens: each is registered as a
dial path, tracked per connection id, and torn down when the connection is
released, deleted, or the service shuts down.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dbdock.domains.connections.app.dial_registry import DialPathRegistry, SupportsDial
from dbdock.domains.connections.app.tunnel import HostKeyVerifier, SSHTunnelProvider
from dbdock.domains.connections.domain.types import get_type_spec
from dbdock.domains.connections.providers.exceptions import TunnelError

if TYPE_CHECKING:
    from dbdock.domains.connections.app.executor import NetworkExecutor
    from dbdock.domains.connections.domain.config import ConnectionConfig, SSHConfig

logger = logging.getLogger(__name__)

ProviderFactory = Callable[["SSHConfig"], SupportsDial]


@dataclass(frozen=True)
class NetworkPath:
    """Where a driver should connect.

    ``kind`` is "direct" (dial ``address`` normally) or "tunnel" (dial
    ``address`` through the registered network ``network``).
    """

    kind: str
    address: str
    connection_id: str = ""
    network: str = "tcp"

    @property
    def is_tunnel(self) -> bool:
        return self.kind == "tunnel"


def default_provider_factory(host_key_verifier: HostKeyVerifier | None = None) -> ProviderFactory:
    def factory(ssh_config: SSHConfig) -> SupportsDial:
        return SSHTunnelProvider(ssh_config, host_key_verifier).open()

    return factory


class NetworkPathService:
    """Opens direct or SSH-tunneled network paths for connections."""

    def __init__(
        self,
        registry: DialPathRegistry | None = None,
        provider_factory: ProviderFactory | None = None,
        executor: NetworkExecutor | None = None,
    ) -> None:
        self._registry = registry or DialPathRegistry()
        self._provider_factory = provider_factory or default_provider_factory()
        self._executor = executor
        self._paths_by_connection: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    @property
    def registry(self) -> DialPathRegistry:
        return self._registry

    def open(self, connection_id: str, config: ConnectionConfig) -> NetworkPath:
        """Return the path for ``config``, opening an SSH session if it uses one.

        Raises:
            TunnelError: If the SSH session cannot be established.
        """
        if not config.use_ssh or not get_type_spec(config.type).supports_ssh:
            return NetworkPath(kind="direct", address=config.address, connection_id=connection_id)

        if config.ssh is None:
            raise TunnelError(f"Connection {connection_id!r} enables SSH without SSH settings")

        provider = self._provider_factory(config.ssh)
        try:
            handle = self._registry.register(provider, config.ssh.host)
        except Exception:
            provider.close()
            raise
        self._registry.acquire(handle.name)
        with self._lock:
            self._paths_by_connection.setdefault(connection_id, set()).add(handle.name)
        return NetworkPath(
            kind="tunnel",
            address=config.address,
            connection_id=connection_id,
            network=handle.name,
        )

    def open_async(self, connection_id: str, config: ConnectionConfig) -> Future[NetworkPath]:
        """Run ``open`` on the network executor."""
        if self._executor is None:
            from dbdock.domains.connections.app.executor import NetworkExecutor

            self._executor = NetworkExecutor()
        return self._executor.submit(self.open, connection_id, config)

    def release(self, path: NetworkPath) -> None:
        """Drop the caller's use of a path. Direct paths need no cleanup."""
        if not path.is_tunnel:
            return
        self._registry.release(path.network)
        # A tunnel lives as long as the driver connection that opened it.
        self._registry.retire(path.network)
        self._forget(path.network)

    def close_connection(self, connection_id: str) -> int:
        """Retire every tunnel opened for ``connection_id``.

        Tunnels still held by a driver close on their last release. Returns
        the number of paths retired.
        """
        with self._lock:
            names = self._paths_by_connection.pop(connection_id, set())
        for name in names:
            self._registry.retire(name)
        if names:
            logger.info("Retired %d SSH dial path(s) for connection %s", len(names), connection_id)
        return len(names)

    def close_all(self) -> None:
        with self._lock:
            self._paths_by_connection.clear()
        self._registry.close_all()
        if self._executor is not None:
            self._executor.shutdown(wait=False)

    def _forget(self, name: str) -> None:
        if self._registry.get(name) is not None:
            return
        with self._lock:
            for connection_id, names in list(self._paths_by_connection.items()):
                names.discard(name)
                if not names:
                    del self._paths_by_connection[connection_id]
