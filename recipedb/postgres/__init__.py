"""
PostgreSQL provisioning phases.

Re-exports the public API so that callers can use
``from recipedb.postgres import ...``.
"""

from recipedb.postgres.artifacts import (
    ENV_KEYS,
    ConnectionInfo,
    connection_command,
    env_file_contents,
    psql_command,
    read_connection_file,
    write_artifacts,
)
from recipedb.postgres.binaries import PgBinaries, locate_binaries
from recipedb.postgres.lifecycle import (
    Liveness,
    ServerHandle,
    ServerState,
    await_ready,
    check_liveness,
    data_dir_state,
    init_data_dir,
    start_server,
)
from recipedb.postgres.roles import ensure_role_and_grants
from recipedb.postgres.schema import SEED_RECIPES, SeedRecipe, apply_schema

__all__ = [
    "ENV_KEYS",
    "SEED_RECIPES",
    "ConnectionInfo",
    "Liveness",
    "PgBinaries",
    "SeedRecipe",
    "ServerHandle",
    "ServerState",
    "apply_schema",
    "await_ready",
    "check_liveness",
    "connection_command",
    "data_dir_state",
    "ensure_role_and_grants",
    "env_file_contents",
    "init_data_dir",
    "locate_binaries",
    "psql_command",
    "read_connection_file",
    "start_server",
    "write_artifacts",
]
