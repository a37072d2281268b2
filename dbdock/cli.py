#!/usr/bin/env python3
"""dbdock - connection management for a multi-database client."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from dbdock.domains.connections.domain.types import get_supported_db_types


def _add_connection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--host", "-s", help="Server host")
    parser.add_argument("--port", "-P", help="Server port (defaults to the type's standard port)")
    parser.add_argument("--user", "-u", help="Username")
    parser.add_argument("--password", "-p", help="Password")
    parser.add_argument(
        "--no-save-password",
        action="store_true",
        help="Do not persist passwords for this connection",
    )
    parser.add_argument("--database", "-d", help="Database name (file path for SQLite)")
    parser.add_argument("--uri", help="Connection URI overriding host/port")
    parser.add_argument("--timeout", help="Connect timeout in seconds (1-3600, default 30)")
    parser.add_argument("--include-db", action="append", metavar="NAME", help="Only show this database (repeatable)")

    ssh_group = parser.add_argument_group("SSH tunnel")
    ssh_group.add_argument("--ssh-host", help="SSH host (enables tunneling)")
    ssh_group.add_argument("--ssh-port", help="SSH port (default 22)")
    ssh_group.add_argument("--ssh-user", help="SSH username")
    ssh_group.add_argument("--ssh-password", help="SSH password")
    ssh_group.add_argument("--ssh-key", help="Path to SSH private key")

    mongo_group = parser.add_argument_group("MongoDB")
    mongo_group.add_argument("--hosts", help="Comma-separated replica set members (host:port)")
    mongo_group.add_argument("--replica-set", help="Replica set name")
    mongo_group.add_argument("--auth-source", help="Authentication database")

    other_group = parser.add_argument_group("Redis / custom")
    other_group.add_argument("--redis-db", help="Redis database index (0-15)")
    other_group.add_argument("--driver", help="Driver name (custom only)")
    other_group.add_argument("--dsn", help="Driver DSN (custom only)")


def main() -> int:
    """Entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="dbdock",
        description="Manage saved database connections and SSH tunnels",
    )
    parser.add_argument(
        "--state",
        metavar="PATH",
        help="Path to the state JSON file (overrides ~/.dbdock/state.json)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Also log to stderr")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    conn_parser = subparsers.add_parser(
        "connections",
        help="Manage saved connections",
        aliases=["connection"],
    )
    conn_subparsers = conn_parser.add_subparsers(dest="conn_command", help="Connection commands")

    conn_subparsers.add_parser("list", help="List all saved connections")

    add_parser = conn_subparsers.add_parser("add", help="Add a new connection", aliases=["create"])
    add_parser.add_argument("db_type", choices=get_supported_db_types(), help="Database type")
    add_parser.add_argument("--name", "-n", help="Connection name")
    add_parser.add_argument("--id", help="Connection id (generated when omitted)")
    _add_connection_arguments(add_parser)

    edit_parser = conn_subparsers.add_parser("edit", help="Edit an existing connection")
    edit_parser.add_argument("connection", help="Id or name of connection to edit")
    edit_parser.add_argument("--name", "-n", help="New connection name")
    edit_parser.add_argument("--db-type", choices=get_supported_db_types(), help="Database type")
    edit_parser.add_argument("--no-ssh", action="store_true", help="Disable SSH tunneling")
    _add_connection_arguments(edit_parser)

    delete_parser = conn_subparsers.add_parser("delete", help="Delete a connection")
    delete_parser.add_argument("connection", help="Id or name of connection to delete")

    import_parser = conn_subparsers.add_parser("import", help="Import connections from a JSON array")
    import_parser.add_argument("file", help="JSON file to import ('-' for stdin)")

    export_parser = conn_subparsers.add_parser("export", help="Export connections as a JSON array")
    export_parser.add_argument("file", nargs="?", help="Output file (default: stdout)")

    open_parser = conn_subparsers.add_parser("open", help="Open the network path of a connection")
    open_parser.add_argument("connection", help="Id or name of connection to open")
    open_parser.add_argument(
        "--forward",
        action="store_true",
        help="Use a local port forward instead of a named dial path",
    )
    open_parser.add_argument("--known-hosts", metavar="PATH", help="known_hosts file for host key checks")
    open_parser.add_argument(
        "--insecure-host-key",
        action="store_true",
        help="Accept any SSH host key (unsafe)",
    )

    args = parser.parse_args(sys.argv[1:])
    if args.state:
        os.environ["DBDOCK_STATE_PATH"] = str(args.state)

    from dbdock.shared.core.logs import configure_logging

    configure_logging(logging.DEBUG if args.verbose else logging.INFO, stderr=args.verbose)

    from dbdock.domains.connections.cli.commands import (
        cmd_connection_create,
        cmd_connection_delete,
        cmd_connection_edit,
        cmd_connection_export,
        cmd_connection_import,
        cmd_connection_list,
        cmd_connection_open,
    )

    if args.command in {"connections", "connection"}:
        handlers = {
            "list": cmd_connection_list,
            "add": cmd_connection_create,
            "create": cmd_connection_create,
            "edit": cmd_connection_edit,
            "delete": cmd_connection_delete,
            "import": cmd_connection_import,
            "export": cmd_connection_export,
            "open": cmd_connection_open,
        }
        handler = handlers.get(args.conn_command)
        if handler is None:
            conn_parser.print_help()
            return 1
        return handler(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
