"""SSH tunnel support for database connections.

Two flavours are offered:

* ``SSHTunnelProvider`` opens one authenticated SSH session and exposes
  ``dial(address)``, which proxies a raw TCP stream through the session. It
  backs the dial paths handed to drivers that accept a custom dialer.
* ``create_ssh_tunnel`` starts a local port forward (127.0.0.1:<random>) for
  drivers that can only connect to a host and port.
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import paramiko

from dbdock.domains.connections.providers.exceptions import (
    DialPathClosedError,
    MissingDriverError,
    TunnelError,
)

if TYPE_CHECKING:
    from dbdock.domains.connections.domain.config import ConnectionConfig, SSHConfig

logger = logging.getLogger(__name__)

SSH_DIAL_TIMEOUT_SECONDS = 5.0

_KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
    paramiko.RSAKey,
)


def ensure_ssh_tunnel_available() -> None:
    """Ensure local port forwarding dependencies are installed."""
    forced_missing = os.environ.get("DBDOCK_MOCK_MISSING_DRIVERS", "").strip()
    if forced_missing:
        forced = {s.strip() for s in forced_missing.split(",") if s.strip()}
        if "ssh" in forced:
            raise MissingDriverError("SSH tunnel", "ssh", "sshtunnel")
    try:
        import sshtunnel  # noqa: F401
    except Exception as e:
        raise MissingDriverError(
            "SSH tunnel",
            "ssh",
            "sshtunnel",
            module_name="sshtunnel",
            import_error=str(e),
        ) from e


def split_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts."""
    host, sep, port_text = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Address must be host:port, got {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ValueError(f"Invalid port in address {address!r}") from exc
    if not 0 < port <= 65535:
        raise ValueError(f"Port out of range in address {address!r}")
    return host, port


def load_private_key(key_path: str) -> paramiko.PKey | None:
    """Load a private key file, returning None (with a warning) if it can't be used."""
    path = Path(key_path).expanduser()
    if not path.is_file():
        logger.warning("SSH private key not readable: path=%s", path)
        return None

    last_error: Exception | None = None
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key_file(str(path))
        except OSError as exc:
            logger.warning("Failed to read SSH private key: path=%s, reason: %s", path, exc)
            return None
        except (paramiko.SSHException, ValueError) as exc:
            last_error = exc
    logger.warning("Failed to parse SSH private key: path=%s, reason: %s", path, last_error)
    return None


# ---------------------------------------------------------------------------
# Host key verification


class HostKeyVerifier(ABC):
    """Decides whether the SSH server's host key is trusted."""

    @abstractmethod
    def configure(self, client: paramiko.SSHClient) -> None:
        """Install known keys and the missing-key policy on a client."""

    def expected_host_key(self, host: str, port: int) -> paramiko.PKey | None:
        """Key the server must present, for transports that take a single key.

        Returning None disables the check.
        """
        return None


class KnownHostsVerifier(HostKeyVerifier):
    """Strict verification against an OpenSSH known_hosts file.

    Unknown hosts are rejected. Without an explicit path the user's
    ``~/.ssh/known_hosts`` is used.
    """

    def __init__(self, known_hosts_path: str | Path | None = None) -> None:
        self._path = Path(known_hosts_path).expanduser() if known_hosts_path else None

    def configure(self, client: paramiko.SSHClient) -> None:
        if self._path is None:
            client.load_system_host_keys()
        elif self._path.exists():
            client.load_host_keys(str(self._path))
        client.set_missing_host_key_policy(paramiko.RejectPolicy())

    def expected_host_key(self, host: str, port: int) -> paramiko.PKey | None:
        path = self._path or Path("~/.ssh/known_hosts").expanduser()
        keys = paramiko.HostKeys()
        if path.exists():
            try:
                keys.load(str(path))
            except OSError as exc:
                raise TunnelError("Cannot read known_hosts", reason=str(exc)) from exc
        lookup_name = host if port == 22 else f"[{host}]:{port}"
        entry = keys.lookup(lookup_name)
        if not entry:
            raise TunnelError("Host key verification failed", reason=f"{lookup_name} is not in {path}")
        return next(iter(entry.values()))


class _AcceptAndWarnPolicy(paramiko.MissingHostKeyPolicy):
    def missing_host_key(self, client: paramiko.SSHClient, hostname: str, key: paramiko.PKey) -> None:
        logger.warning(
            "Accepting unverified SSH host key for %s (%s %s)",
            hostname,
            key.get_name(),
            key.get_base64()[:16],
        )


class InsecureSkipVerifier(HostKeyVerifier):
    """Accept any host key. Must be chosen explicitly; never the default."""

    def configure(self, client: paramiko.SSHClient) -> None:
        client.set_missing_host_key_policy(_AcceptAndWarnPolicy())


# ---------------------------------------------------------------------------
# Session provider


class SSHTunnelProvider:
    """One authenticated SSH session used as a TCP proxy.

    Usage:
        provider = SSHTunnelProvider(config.ssh).open()
        channel = provider.dial("db.internal:3306")
        ...
        provider.close()

    Failures surface as a single ``TunnelError``; there is no retry.
    """

    def __init__(
        self,
        ssh_config: SSHConfig,
        host_key_verifier: HostKeyVerifier | None = None,
        *,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        timeout: float = SSH_DIAL_TIMEOUT_SECONDS,
    ) -> None:
        self._config = ssh_config
        self._verifier = host_key_verifier or KnownHostsVerifier()
        self._client_factory = client_factory
        self._timeout = timeout
        self._client: paramiko.SSHClient | None = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def config(self) -> SSHConfig:
        return self._config

    @property
    def is_open(self) -> bool:
        if self._client is None or self._closed:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    def _auth_kwargs(self) -> dict[str, Any]:
        """Collect the auth methods to offer; key and password may both be present."""
        kwargs: dict[str, Any] = {}
        if self._config.key_path:
            pkey = load_private_key(self._config.key_path)
            if pkey is not None:
                kwargs["pkey"] = pkey
        if self._config.password:
            kwargs["password"] = self._config.password
        return kwargs

    def open(self) -> SSHTunnelProvider:
        """Connect and authenticate. Returns self for chaining."""
        with self._lock:
            if self._closed:
                raise TunnelError("SSH tunnel provider has been closed")
            if self._client is not None:
                return self

            cfg = self._config
            logger.info("Opening SSH connection: address=%s user=%s", cfg.address, cfg.user)
            auth = self._auth_kwargs()
            if not auth:
                logger.warning("No SSH authentication method configured (password or private key)")
                raise TunnelError(
                    f"SSH connection to {cfg.address} failed",
                    reason="no authentication method configured",
                )

            client = self._client_factory()
            try:
                self._verifier.configure(client)
                client.connect(
                    cfg.host,
                    port=cfg.port,
                    username=cfg.user,
                    timeout=self._timeout,
                    banner_timeout=self._timeout,
                    auth_timeout=self._timeout,
                    allow_agent=False,
                    look_for_keys=False,
                    **auth,
                )
            except (paramiko.SSHException, OSError) as exc:
                client.close()
                logger.error("SSH connection failed: address=%s user=%s reason=%s", cfg.address, cfg.user, exc)
                raise TunnelError(f"SSH connection to {cfg.address} failed", reason=str(exc) or type(exc).__name__) from exc

            self._client = client
            logger.info("SSH connection established: address=%s user=%s", cfg.address, cfg.user)
            return self

    def dial(self, address: str, timeout: float | None = None) -> paramiko.Channel:
        """Open a TCP stream to ``address`` through the SSH session.

        The returned channel behaves like a connected socket.
        """
        host, port = split_address(address)
        client = self._client
        if client is None or self._closed:
            raise DialPathClosedError(f"ssh://{self._config.address}")
        transport = client.get_transport()
        if transport is None or not transport.is_active():
            raise TunnelError(f"SSH session to {self._config.address} is no longer active")
        try:
            return transport.open_channel(
                "direct-tcpip",
                (host, port),
                ("127.0.0.1", 0),
                timeout=timeout if timeout is not None else self._timeout,
            )
        except (paramiko.SSHException, OSError) as exc:
            raise TunnelError(f"Dial through SSH to {address} failed", reason=str(exc) or type(exc).__name__) from exc

    def close(self) -> None:
        """Close the SSH session. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            client, self._client = self._client, None
        if client is not None:
            client.close()
            logger.info("SSH connection closed: address=%s", self._config.address)

    def __enter__(self) -> SSHTunnelProvider:
        return self.open()

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Local port forwarding

_forwarders: dict[str, Any] = {}
_forwarders_lock = threading.Lock()


def _forwarder_key(ssh: SSHConfig, config: ConnectionConfig) -> str:
    return f"{ssh.host}:{ssh.port}:{ssh.user}->{config.host}:{config.port}"


def create_ssh_tunnel(
    config: ConnectionConfig,
    host_key_verifier: HostKeyVerifier | None = None,
) -> tuple[Any, str, int]:
    """Create a local port forward for the connection if SSH is enabled.

    Returns:
        Tuple of (tunnel_object, local_host, local_port) if SSH enabled,
        or (None, original_host, original_port) if SSH not enabled.
    """
    if not config.use_ssh or config.ssh is None:
        return None, config.host, config.port

    ensure_ssh_tunnel_available()

    from sshtunnel import BaseSSHTunnelForwarderError, SSHTunnelForwarder

    ssh = config.ssh
    verifier = host_key_verifier or KnownHostsVerifier()

    ssh_kwargs: dict[str, Any] = {"ssh_username": ssh.user}
    if ssh.key_path:
        pkey = load_private_key(ssh.key_path)
        if pkey is not None:
            ssh_kwargs["ssh_pkey"] = pkey
    if ssh.password:
        ssh_kwargs["ssh_password"] = ssh.password
    if "ssh_pkey" not in ssh_kwargs and "ssh_password" not in ssh_kwargs:
        raise TunnelError(f"SSH connection to {ssh.address} failed", reason="no authentication method configured")

    tunnel = SSHTunnelForwarder(
        (ssh.host, ssh.port),
        remote_bind_address=(config.host, config.port),
        local_bind_address=("127.0.0.1", 0),
        ssh_host_key=verifier.expected_host_key(ssh.host, ssh.port),
        allow_agent=False,
        host_pkey_directories=[],
        **ssh_kwargs,
    )
    try:
        tunnel.start()
    except (BaseSSHTunnelForwarderError, paramiko.SSHException, OSError) as exc:
        logger.error("SSH port forward failed: address=%s reason=%s", ssh.address, exc)
        raise TunnelError(f"SSH port forward via {ssh.address} failed", reason=str(exc)) from exc

    logger.info(
        "SSH port forward created: local 127.0.0.1:%s -> remote %s",
        tunnel.local_bind_port,
        config.address,
    )
    return tunnel, "127.0.0.1", tunnel.local_bind_port


def get_or_create_local_forward(
    config: ConnectionConfig,
    host_key_verifier: HostKeyVerifier | None = None,
) -> tuple[str, int]:
    """Return a cached local forward for this SSH user and remote address, creating it if needed."""
    if not config.use_ssh or config.ssh is None:
        return config.host, config.port

    key = _forwarder_key(config.ssh, config)
    with _forwarders_lock:
        existing = _forwarders.get(key)
        if existing is not None and existing.is_active:
            logger.info("Reusing SSH port forward: %s", key)
            return "127.0.0.1", existing.local_bind_port
        if existing is not None:
            _forwarders.pop(key, None)
            try:
                existing.stop()
            except Exception as exc:
                logger.warning("Failed to stop stale SSH port forward %s: %s", key, exc)

        tunnel, host, port = create_ssh_tunnel(config, host_key_verifier)
        _forwarders[key] = tunnel
        return host, port


def close_all_forwarders() -> None:
    with _forwarders_lock:
        forwarders = list(_forwarders.items())
        _forwarders.clear()
    for key, tunnel in forwarders:
        try:
            tunnel.stop()
        except Exception as exc:
            logger.warning("Failed to stop SSH port forward %s: %s", key, exc)
        else:
            logger.info("SSH port forward closed: %s", key)
