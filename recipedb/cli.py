"""
recipedb CLI: Command-line interface for provisioning the recipe database.

Provides commands for:
- provision: Start or reuse PostgreSQL and converge database, role, and schema
- status: Report whether the server is running and what the artifacts hold
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="recipedb",
        description="Provision a local PostgreSQL instance for the recipe app",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to a .recipedb.toml file (default: search upward from cwd)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # provision
    provision_parser = subparsers.add_parser(
        "provision",
        help="Start PostgreSQL if needed and apply roles, grants, and schema",
    )
    provision_parser.add_argument(
        "--port", "-p",
        type=int,
        help="PostgreSQL port (default: 5000)",
    )
    provision_parser.add_argument(
        "--database", "-d",
        help="Database name (default: myapp)",
    )
    provision_parser.add_argument(
        "--user", "-U",
        help="Application role (default: appuser)",
    )
    provision_parser.add_argument(
        "--password",
        help="Application role password",
    )
    provision_parser.add_argument(
        "--data-dir",
        help="PostgreSQL data directory (PGDATA)",
    )

    # status
    status_parser = subparsers.add_parser(
        "status",
        help="Check PostgreSQL service status",
    )
    status_parser.add_argument(
        "--port", "-p",
        type=int,
        help="PostgreSQL port (default: 5000)",
    )
    status_parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "provision":
        return handle_provision(args)
    elif args.command == "status":
        return handle_status(args)
    else:
        parser.print_help()
        return 0


def _load_config(args: argparse.Namespace):
    from recipedb.config import ProvisionConfig

    config = ProvisionConfig.load(Path(args.config) if args.config else None)
    return config.with_overrides(
        port=getattr(args, "port", None),
        database=getattr(args, "database", None),
        user=getattr(args, "user", None),
        password=getattr(args, "password", None),
        data_dir=Path(args.data_dir) if getattr(args, "data_dir", None) else None,
    )


def _connection_table(config) -> Table:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Database:", escape(config.database))
    table.add_row("User:", escape(config.user))
    table.add_row("Port:", str(config.port))
    return table


def handle_provision(args: argparse.Namespace) -> int:
    """Handle the provision command."""
    from recipedb.errors import ProvisionError
    from recipedb.postgres.artifacts import psql_command
    from recipedb.runner import provision

    console = Console(soft_wrap=True)

    try:
        config = _load_config(args)
        result = provision(config)
    except ProvisionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    stored = result.stored_connection_command

    if result.already_running:
        console.print(f"PostgreSQL is already running on port {config.port}!")
        console.print(_connection_table(config))
        console.print()
        console.print("To connect to the database, use:")
        console.print(escape(psql_command(config)))
        if stored:
            console.print(f"Or use: {escape(stored)}")
        console.print()
        console.print("Script stopped - server already running.")
        return 0

    console.print("[bold green]PostgreSQL setup complete![/bold green]")
    console.print(_connection_table(config))
    console.print()
    console.print(
        f"Schema + seed complete ({result.statements_applied} statements applied)."
    )
    console.print(f"Environment variables saved to {escape(str(result.env_file))}")
    console.print(f"To load them, run: source {escape(str(result.env_file))}")
    console.print()
    console.print("To connect to the database, use one of the following commands:")
    console.print(escape(psql_command(config)))
    if stored:
        console.print(escape(stored))

    if result.setup_error:
        print(
            f"Warning: database and role setup reported: {result.setup_error}",
            file=sys.stderr,
        )
        return 1
    return 0


def handle_status(args: argparse.Namespace) -> int:
    """Handle the status command."""
    from recipedb.errors import ProvisionError
    from recipedb.postgres.artifacts import read_connection_file
    from recipedb.postgres.binaries import locate_binaries
    from recipedb.postgres.lifecycle import check_liveness, data_dir_state

    try:
        config = _load_config(args)
    except ProvisionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    binaries = locate_binaries(config.install_root)
    liveness = check_liveness(binaries, config)

    connection = None
    if config.connection_file.is_file():
        try:
            connection = read_connection_file(config.connection_file)
        except ProvisionError as e:
            logging.getLogger(__name__).warning(str(e))

    if args.json_output:
        data = {
            "running": liveness.is_running,
            "liveness": liveness.value,
            "version": binaries.version,
            "port": config.port,
            "data_dir": str(config.data_dir),
            "data_dir_state": data_dir_state(config).value,
            "database": config.database,
            "user": config.user,
            "connection_file": str(config.connection_file),
            "env_file": str(config.env_file),
        }
        if connection is not None:
            data["connection"] = {
                "host": connection.host,
                "port": connection.port,
                "user": connection.user,
                "database": connection.database,
            }
        print(json.dumps(data, indent=2))
        return 0 if liveness.is_running else 1

    console = Console(soft_wrap=True)
    if not liveness.is_running:
        console.print(f"PostgreSQL is not running on port {config.port}")
        return 1

    console.print(f"PostgreSQL is running on port {config.port} ({liveness.value})")
    console.print(_connection_table(config))
    if connection is not None:
        console.print(f"Connection file: {escape(str(config.connection_file))}")
        console.print(
            f"  {escape(connection.user)}@{escape(connection.host)}:"
            f"{connection.port}/{escape(connection.database)}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
