"""
ProvisionConfig: Configuration for provisioning the recipe database.

This module provides:

- find_config_file: Walk up directories to locate .recipedb.toml
- deep_merge: Recursively merge two dicts (override wins for leaf values)
- ProvisionConfig: The configuration passed into every provisioning phase

Configuration is loaded from the ``[provision]`` table of `.recipedb.toml`
with optional `.recipedb.local.toml` overrides. The resolution order is:

    dataclass defaults → .recipedb.toml → .recipedb.local.toml → explicit overrides

Example:
    >>> config = ProvisionConfig.load()
    >>> config.port
    5000
    >>> config.with_overrides(port=5433).port
    5433
"""

from __future__ import annotations

import dataclasses
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from recipedb.errors import ConfigError

CONFIG_FILENAME = ".recipedb.toml"
LOCAL_CONFIG_FILENAME = ".recipedb.local.toml"
CONFIG_SECTION = "provision"

DEFAULT_DATABASE = "myapp"
DEFAULT_USER = "appuser"
DEFAULT_PASSWORD = "dbuser123"
DEFAULT_PORT = 5000
DEFAULT_INSTALL_ROOT = Path("/usr/lib/postgresql")
DEFAULT_DATA_DIR = Path("/var/lib/postgresql/data")


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """
    Walk up from *start_dir* to find `.recipedb.toml`.

    Args:
        start_dir: Directory to start searching from. Defaults to ``Path.cwd()``.

    Returns:
        Path to the config file, or ``None`` if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate

        parent = current.parent
        if parent == current:
            return None
        current = parent


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep-merge two dicts. *override* wins for leaf values.

    Neither input is mutated; a new dict is returned.
    """
    merged: dict[str, Any] = {}

    for key in base.keys() | override.keys():
        if key in base and key in override:
            base_val = base[key]
            over_val = override[key]
            if isinstance(base_val, dict) and isinstance(over_val, dict):
                merged[key] = deep_merge(base_val, over_val)
            else:
                merged[key] = over_val
        elif key in base:
            merged[key] = base[key]
        else:
            merged[key] = override[key]

    return merged


# ---------------------------------------------------------------------------
# ProvisionConfig
# ---------------------------------------------------------------------------

_PATH_FIELDS = ("install_root", "data_dir", "connection_file", "env_file", "log_file")


@dataclass(frozen=True)
class ProvisionConfig:
    """
    Configuration for one provisioning run.

    Attributes:
        database: Application database name.
        user: Application login role.
        password: Password set on the application role every run.
        port: Port the server listens on.
        host: Host embedded in artifacts and used for connections.
        install_root: Directory listing installed PostgreSQL versions.
        data_dir: Data directory (PGDATA) for a server launched by recipedb.
        run_as: OS user that runs the server tools via ``sudo -u``
            (``None`` runs them as the current user).
        admin_user: Superuser for administrative SQL.
        admin_password: Superuser password, if the server requires one.
        connection_file: Where the connection command artifact is written.
        env_file: Where the environment-variable artifact is written.
        log_file: Output of the launched server process.
        startup_delay: Seconds to wait after launch before the first poll.
        ready_attempts: Number of readiness polls after launch.
        ready_interval: Seconds between readiness polls.
    """

    database: str = DEFAULT_DATABASE
    user: str = DEFAULT_USER
    password: str = DEFAULT_PASSWORD
    port: int = DEFAULT_PORT
    host: str = "localhost"
    install_root: Path = DEFAULT_INSTALL_ROOT
    data_dir: Path = DEFAULT_DATA_DIR
    run_as: str | None = "postgres"
    admin_user: str = "postgres"
    admin_password: str | None = None
    connection_file: Path = Path("db_connection.txt")
    env_file: Path = Path("db_visualizer") / "postgres.env"
    log_file: Path = Path("postgres.log")
    startup_delay: float = 5.0
    ready_attempts: int = 15
    ready_interval: float = 2.0

    def __post_init__(self) -> None:
        for name in _PATH_FIELDS:
            object.__setattr__(self, name, Path(getattr(self, name)))
        object.__setattr__(self, "port", int(self.port))
        if not 0 < self.port < 65536:
            raise ConfigError(f"Invalid port: {self.port}")
        if self.ready_attempts < 1:
            raise ConfigError("ready_attempts must be at least 1")
        for name in ("database", "user", "password", "admin_user"):
            if not getattr(self, name):
                raise ConfigError(f"{name} must not be empty")

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvisionConfig:
        """
        Create a :class:`ProvisionConfig` from the ``[provision]`` table.

        Raises:
            ConfigError: If the table contains unknown keys.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(
                f"Unknown [{CONFIG_SECTION}] keys: {', '.join(unknown)}. "
                f"Valid keys: {', '.join(sorted(known))}"
            )
        return cls(**data)

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        *,
        start_dir: Path | None = None,
    ) -> ProvisionConfig:
        """
        Load configuration from ``.recipedb.toml`` if one exists.

        An explicit *config_path* must exist. Without one, the file is
        searched for upward from *start_dir*; if none is found the defaults
        are returned. ``.recipedb.local.toml`` beside the file is deep-merged
        on top.

        Raises:
            ConfigError: If *config_path* is missing or a file cannot be parsed.
        """
        if config_path is not None:
            config_path = Path(config_path)
            if not config_path.is_file():
                raise ConfigError(f"Config file not found: {config_path}")
        else:
            config_path = find_config_file(start_dir)
            if config_path is None:
                return cls()

        data = _read_section(config_path)
        local_path = config_path.parent / LOCAL_CONFIG_FILENAME
        if local_path.is_file():
            data = deep_merge(data, _read_section(local_path))

        return cls.from_dict(data)

    def with_overrides(self, **overrides: Any) -> ProvisionConfig:
        """Return a copy with the non-``None`` *overrides* applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if not changes:
            return self
        return dataclasses.replace(self, **changes)


def _read_section(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e
    return dict(data.get(CONFIG_SECTION, {}))
