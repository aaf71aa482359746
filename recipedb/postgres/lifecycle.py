"""
PostgreSQL liveness probing and server launch.

The launch is split in two: :func:`start_server` spawns the server detached
and returns immediately with a :class:`ServerHandle`; :func:`await_ready`
blocks, polling readiness with a bounded number of attempts. A timeout is
reported as ``ServerState.TIMED_OUT`` rather than raised, so callers decide
whether to proceed.
"""

from __future__ import annotations

import getpass
import logging
import subprocess
import time
from dataclasses import dataclass
from enum import Enum

import psycopg

from recipedb.config import ProvisionConfig
from recipedb.errors import CommandError
from recipedb.postgres.binaries import PgBinaries
from recipedb.postgres.roles import connect_admin

logger = logging.getLogger(__name__)


class Liveness(str, Enum):
    """Result of probing the configured port before any action is taken."""

    READY = "ready"
    PROCESS_CONNECTABLE = "process_connectable"
    NOT_RUNNING = "not_running"

    @property
    def is_running(self) -> bool:
        return self is not Liveness.NOT_RUNNING


class ServerState(str, Enum):
    NO_DATA_DIR = "no_data_dir"
    INITIALIZED = "initialized"
    STARTING = "starting"
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass
class ServerHandle:
    """A server process launched by :func:`start_server`."""

    process: subprocess.Popen
    port: int
    state: ServerState = ServerState.STARTING

    @property
    def pid(self) -> int:
        return self.process.pid

    def exited(self) -> bool:
        return self.process.poll() is not None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_service_user(cmd: list[str], config: ProvisionConfig) -> list[str]:
    """Prefix *cmd* with ``sudo -u`` when tools must run as another user."""
    if config.run_as and config.run_as != getpass.getuser():
        return ["sudo", "-u", config.run_as, *cmd]
    return cmd


def _run_cmd(
    cmd: list[str],
    *,
    timeout: float = 30.0,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run a command to completion, capturing its output."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise CommandError(cmd, stderr=str(e)) from e

    if check and result.returncode != 0:
        raise CommandError(
            cmd,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    return result


# ---------------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------------


def probe_ready(binaries: PgBinaries, config: ProvisionConfig) -> bool:
    """Return True if ``pg_isready`` reports the server accepting connections."""
    cmd = _as_service_user(
        [
            binaries.tool("pg_isready"),
            "-h", config.host,
            "-p", str(config.port),
            "-q",
        ],
        config,
    )
    try:
        result = _run_cmd(cmd, timeout=10.0, check=False)
    except (CommandError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Readiness probe could not run: {e}")
        return False
    return result.returncode == 0


def find_server_process(port: int) -> bool:
    """Return True if the process table has a postgres bound to *port*."""
    try:
        result = _run_cmd(["pgrep", "-f", f"postgres.*-p {port}"], check=False)
    except CommandError as e:
        logger.debug(f"Process scan unavailable: {e}")
        return False
    return result.returncode == 0


def can_connect(config: ProvisionConfig) -> bool:
    """Return True if the application database accepts a superuser connection."""
    try:
        with connect_admin(config, config.database, connect_timeout=5):
            return True
    except psycopg.Error as e:
        logger.debug(f"Direct connection to {config.database!r} failed: {e}")
        return False


def check_liveness(binaries: PgBinaries, config: ProvisionConfig) -> Liveness:
    """
    Decide whether a server is already serving the configured port.

    Uses two independent signals, since either can give a false negative:
    ``pg_isready`` against the port, and a process-table match. A matching
    process only counts when the target database is reachable.
    """
    if probe_ready(binaries, config):
        logger.info(f"PostgreSQL is already running on port {config.port}")
        return Liveness.READY

    if find_server_process(config.port):
        logger.info(f"Found existing PostgreSQL process on port {config.port}")
        if can_connect(config):
            logger.info(f"Database {config.database!r} is accessible")
            return Liveness.PROCESS_CONNECTABLE
        logger.info("Existing process is not accepting connections; starting anyway")

    return Liveness.NOT_RUNNING


# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------


def data_dir_state(config: ProvisionConfig) -> ServerState:
    """``INITIALIZED`` once ``PG_VERSION`` exists in the data directory."""
    if (config.data_dir / "PG_VERSION").exists():
        return ServerState.INITIALIZED
    return ServerState.NO_DATA_DIR


def init_data_dir(binaries: PgBinaries, config: ProvisionConfig) -> bool:
    """
    Initialise the data directory unless ``PG_VERSION`` is already present.

    Returns:
        True if ``initdb`` ran.
    """
    if data_dir_state(config) is ServerState.INITIALIZED:
        logger.debug(f"Data directory already initialised: {config.data_dir}")
        return False

    logger.info(f"Initializing PostgreSQL data directory: {config.data_dir}")
    cmd = _as_service_user(
        [binaries.tool("initdb"), "-D", str(config.data_dir)], config
    )
    _run_cmd(cmd, timeout=300.0)
    return True


def start_server(binaries: PgBinaries, config: ProvisionConfig) -> ServerHandle:
    """
    Launch the server detached and return without waiting.

    The process gets its own session so it keeps running after recipedb
    exits; its output goes to ``config.log_file``.
    """
    cmd = _as_service_user(
        [
            binaries.tool("postgres"),
            "-D", str(config.data_dir),
            "-p", str(config.port),
        ],
        config,
    )
    config.log_file.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Starting PostgreSQL server on port {config.port}...")
    logger.debug(f"Running: {' '.join(cmd)}")
    with open(config.log_file, "ab") as log:
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise CommandError(cmd, stderr=str(e)) from e

    logger.debug(f"PostgreSQL process started with pid {process.pid}")
    return ServerHandle(process=process, port=config.port)


def await_ready(
    handle: ServerHandle,
    binaries: PgBinaries,
    config: ProvisionConfig,
    *,
    attempts: int | None = None,
    interval: float | None = None,
) -> ServerState:
    """
    Poll readiness until the server answers or the budget is spent.

    Returns:
        ``ServerState.READY`` or ``ServerState.TIMED_OUT``. The handle's
        state is updated to match.
    """
    attempts = attempts if attempts is not None else config.ready_attempts
    interval = interval if interval is not None else config.ready_interval

    logger.info("Waiting for PostgreSQL to start...")
    if config.startup_delay > 0:
        time.sleep(config.startup_delay)

    for attempt in range(1, attempts + 1):
        if probe_ready(binaries, config):
            logger.info("PostgreSQL is ready!")
            handle.state = ServerState.READY
            return handle.state
        if handle.exited():
            logger.error(
                f"PostgreSQL process exited with code {handle.process.returncode}; "
                f"see {config.log_file}"
            )
            break
        logger.info(f"Waiting... ({attempt}/{attempts})")
        time.sleep(interval)

    handle.state = ServerState.TIMED_OUT
    return handle.state
