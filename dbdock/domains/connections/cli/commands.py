"""CLI command handlers for dbdock connections."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from dbdock.domains.connections.domain.config import SavedConnection
from dbdock.domains.connections.domain.types import get_display_name, is_file_based
from dbdock.domains.connections.providers.exceptions import ImportFormatError, TunnelError
from dbdock.domains.connections.store.connections import ConnectionStore


def _truncate(text: str, width: int) -> str:
    return text[: width - 2] + ".." if len(text) > width else text


def _find_connection(store: ConnectionStore, ref: str) -> SavedConnection | None:
    """Resolve a connection by id, falling back to its name."""
    conn = store.get_by_id(ref)
    if conn is not None:
        return conn
    for candidate in store.load_all():
        if candidate.name == ref:
            return candidate
    return None


def build_config_dict_from_args(args: Any, base: dict[str, Any] | None = None) -> dict[str, Any]:
    """Overlay CLI options on a raw config dict. Unset options keep ``base`` values."""
    config: dict[str, Any] = dict(base or {})
    simple = {
        "db_type": "type",
        "host": "host",
        "port": "port",
        "user": "user",
        "password": "password",
        "database": "database",
        "uri": "uri",
        "timeout": "timeout",
        "replica_set": "replicaSet",
        "auth_source": "authSource",
        "redis_db": "redisDB",
        "driver": "driver",
        "dsn": "dsn",
    }
    for attr, key in simple.items():
        value = getattr(args, attr, None)
        if value is not None:
            config[key] = value

    hosts = getattr(args, "hosts", None)
    if hosts is not None:
        config["hosts"] = [h for h in hosts.split(",")]
        config["topology"] = "replica" if len(config["hosts"]) > 1 else "single"
    if getattr(args, "no_save_password", False):
        config["savePassword"] = False

    ssh: dict[str, Any] = dict(config.get("ssh") or {})
    ssh_options = {
        "ssh_host": "host",
        "ssh_port": "port",
        "ssh_user": "user",
        "ssh_password": "password",
        "ssh_key": "keyPath",
    }
    for attr, key in ssh_options.items():
        value = getattr(args, attr, None)
        if value is not None:
            ssh[key] = value
    if getattr(args, "ssh_host", None):
        config["useSSH"] = True
    if getattr(args, "no_ssh", False):
        config["useSSH"] = False
    if ssh:
        config["ssh"] = ssh
    return config


def cmd_connection_list(args: Any, store: ConnectionStore | None = None) -> int:
    """List all saved connections."""
    store = store or ConnectionStore.get_instance()
    connections = store.load_all()
    if not connections:
        print("No saved connections.")
        return 0

    print(f"{'ID':<14} {'Name':<20} {'Type':<12} {'Connection Info':<36} {'SSH':<5}")
    print("-" * 91)
    for conn in connections:
        cfg = conn.config
        if is_file_based(cfg.type):
            conn_info = cfg.database or cfg.host
        elif cfg.hosts:
            conn_info = ",".join(cfg.hosts)
        else:
            conn_info = f"{cfg.address}/{cfg.database}" if cfg.database else cfg.address
        print(
            f"{_truncate(conn.id, 14):<14} {_truncate(conn.name, 20):<20} "
            f"{get_display_name(cfg.type):<12} {_truncate(conn_info, 36):<36} {'yes' if cfg.use_ssh else 'no':<5}"
        )
    return 0


def cmd_connection_create(args: Any, store: ConnectionStore | None = None) -> int:
    """Create a new connection."""
    store = store or ConnectionStore.get_instance()
    if args.name and any(c.name == args.name for c in store.load_all()):
        print(f"Error: Connection '{args.name}' already exists. Use 'edit' to modify it.")
        return 1

    raw: dict[str, Any] = {
        "name": args.name,
        "config": build_config_dict_from_args(args),
    }
    if getattr(args, "id", None):
        raw["id"] = args.id
    if getattr(args, "include_db", None):
        raw["includeDatabases"] = list(args.include_db)

    saved = store.add(raw)
    print(f"Connection '{saved.name}' created successfully (id: {saved.id}).")
    return 0


def cmd_connection_edit(args: Any, store: ConnectionStore | None = None) -> int:
    """Edit an existing connection."""
    store = store or ConnectionStore.get_instance()
    conn = _find_connection(store, args.connection)
    if conn is None:
        print(f"Error: Connection '{args.connection}' not found.")
        return 1

    raw = conn.to_dict()
    if args.name:
        if args.name != conn.name and any(c.name == args.name for c in store.load_all()):
            print(f"Error: Connection '{args.name}' already exists.")
            return 1
        raw["name"] = args.name
    raw["config"] = build_config_dict_from_args(args, raw["config"])
    if getattr(args, "include_db", None) is not None:
        raw["includeDatabases"] = list(args.include_db)

    updated = store.update(raw)
    print(f"Connection '{updated.name}' updated successfully.")
    return 0


def cmd_connection_delete(args: Any, store: ConnectionStore | None = None) -> int:
    """Delete a connection."""
    store = store or ConnectionStore.get_instance()
    conn = _find_connection(store, args.connection)
    if conn is None:
        print(f"Error: Connection '{args.connection}' not found.")
        return 1

    store.remove(conn.id)
    print(f"Connection '{conn.name}' deleted successfully.")
    return 0


def cmd_connection_import(args: Any, store: ConnectionStore | None = None) -> int:
    """Import connections from a JSON array file."""
    store = store or ConnectionStore.get_instance()
    try:
        text = sys.stdin.read() if args.file == "-" else Path(args.file).read_text(encoding="utf-8")
    except OSError as exc:
        print(f"Error: Cannot read {args.file}: {exc}")
        return 1
    try:
        added = store.import_json(text)
    except ImportFormatError as exc:
        print(f"Error: {exc}")
        return 1
    print(f"Imported {len(added)} connection(s).")
    return 0


def cmd_connection_export(args: Any, store: ConnectionStore | None = None) -> int:
    """Export connections as a JSON array."""
    store = store or ConnectionStore.get_instance()
    payload = store.export_json()
    if args.file in (None, "-"):
        print(payload)
        return 0
    Path(args.file).write_text(payload + "\n", encoding="utf-8")
    print(f"Exported {len(store.load_all())} connection(s) to {args.file}.")
    return 0


def cmd_connection_open(args: Any, store: ConnectionStore | None = None) -> int:
    """Resolve (and for SSH connections, establish) the network path of a connection."""
    from dbdock.domains.connections.app.dial_registry import DialPathRegistry
    from dbdock.domains.connections.app.network import NetworkPathService, default_provider_factory
    from dbdock.domains.connections.app.tunnel import (
        InsecureSkipVerifier,
        KnownHostsVerifier,
        close_all_forwarders,
        get_or_create_local_forward,
    )

    store = store or ConnectionStore.get_instance()
    conn = _find_connection(store, args.connection)
    if conn is None:
        print(f"Error: Connection '{args.connection}' not found.")
        return 1

    verifier = InsecureSkipVerifier() if args.insecure_host_key else KnownHostsVerifier(args.known_hosts)

    if args.forward:
        try:
            host, port = get_or_create_local_forward(conn.config, verifier)
        except (TunnelError, ConnectionError) as exc:
            print(f"Error: {exc}")
            return 1
        print(f"{conn.name}: {host}:{port}")
        if conn.config.use_ssh:
            try:
                input("Port forward active, press Enter to close...")
            except (EOFError, KeyboardInterrupt):
                pass
            close_all_forwarders()
        return 0

    service = NetworkPathService(DialPathRegistry(), default_provider_factory(verifier))
    try:
        path = service.open(conn.id, conn.config)
    except TunnelError as exc:
        print(f"Error: {exc}")
        return 1
    try:
        if path.is_tunnel:
            print(f"{conn.name}: tunnel {path.network} -> {path.address}")
        else:
            print(f"{conn.name}: direct {path.address}")
    finally:
        service.close_all()
    return 0
