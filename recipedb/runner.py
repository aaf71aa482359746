"""
Provisioning run: the phases composed in order.

    locate → liveness (short-circuit) → initdb → start → await ready
    → database/role/grants → artifacts → schema + seed

Each phase is idempotent, so an interrupted run is repaired by running again.
A readiness timeout is not fatal: it is logged and the later phases are left
to fail on their own if the server never came up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import psycopg

from recipedb.config import ProvisionConfig
from recipedb.postgres.artifacts import connection_command, write_artifacts
from recipedb.postgres.binaries import locate_binaries
from recipedb.postgres.lifecycle import (
    Liveness,
    ServerState,
    await_ready,
    check_liveness,
    init_data_dir,
    start_server,
)
from recipedb.postgres.roles import ensure_role_and_grants
from recipedb.postgres.schema import apply_schema

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """
    Outcome of :func:`provision`.

    Attributes:
        config: Configuration the run used.
        liveness: What the pre-flight probe found.
        already_running: True if the run short-circuited on a live server.
        version: PostgreSQL version directory in use, if found.
        initialized: True if ``initdb`` ran during this run.
        server_state: State of the launched server, ``None`` if none was launched.
        pid: PID of the launched server.
        connection_file: Connection artifact path, when written.
        env_file: Environment artifact path, when written.
        statements_applied: Schema and seed statements executed.
        setup_error: Error from the database and role phase, if it failed.
    """

    config: ProvisionConfig
    liveness: Liveness
    already_running: bool = False
    version: str | None = None
    initialized: bool = False
    server_state: ServerState | None = None
    pid: int | None = None
    connection_file: Path | None = None
    env_file: Path | None = None
    statements_applied: int = 0
    setup_error: str | None = None

    @property
    def connection_command(self) -> str:
        return connection_command(self.config)

    @property
    def stored_connection_command(self) -> str | None:
        """The command held in the connection file on disk, if present."""
        path = self.config.connection_file
        if path.is_file():
            return path.read_text().strip()
        return None


def provision(config: ProvisionConfig | None = None) -> ProvisionResult:
    """
    Provision the local PostgreSQL instance described by *config*.

    Returns:
        A :class:`ProvisionResult`. When a server is already serving the
        port, nothing is changed and ``already_running`` is set.

    Raises:
        ProvisionError: If initialisation, launch, or the schema phase fails.
            A failed database and role phase is recorded on the result and
            surfaces through the schema phase.
    """
    if config is None:
        config = ProvisionConfig()

    logger.info("Starting PostgreSQL setup...")
    binaries = locate_binaries(config.install_root)

    liveness = check_liveness(binaries, config)
    result = ProvisionResult(
        config=config, liveness=liveness, version=binaries.version
    )
    if liveness.is_running:
        logger.info("Server already running; skipping setup")
        result.already_running = True
        return result

    result.initialized = init_data_dir(binaries, config)

    handle = start_server(binaries, config)
    result.pid = handle.pid
    result.server_state = await_ready(handle, binaries, config)
    if result.server_state is ServerState.TIMED_OUT:
        logger.warning(
            f"PostgreSQL did not become ready after {config.ready_attempts} "
            "attempts; continuing"
        )

    try:
        ensure_role_and_grants(config)
    except psycopg.Error as e:
        # Left to the schema phase, which stops on the first failure.
        logger.error(f"Database and role setup failed: {e}")
        result.setup_error = str(e).strip()
    result.connection_file, result.env_file = write_artifacts(config)
    result.statements_applied = apply_schema(config)

    logger.info("PostgreSQL setup complete!")
    return result
