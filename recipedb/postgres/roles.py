"""
Database, role, and grant management.

Two phases, both safe to repeat:

1. Existence-gated creation: the database and the login role are created
   only when missing. "Already exists" is recognised by SQLSTATE
   (``DuplicateDatabase`` / ``DuplicateObject``) and logged, not raised.
2. Unconditional convergence: the role password is reset and every grant is
   re-applied on each run, whether or not the role was just created.

Default privileges only cover objects created after they are set, so the
blanket ``ON ALL ... IN SCHEMA`` grants are issued as well for objects that
already exist.
"""

from __future__ import annotations

import logging
from typing import Any

import psycopg
from psycopg import errors, sql

from recipedb.config import ProvisionConfig

logger = logging.getLogger(__name__)

MAINTENANCE_DATABASE = "postgres"

# Applied inside the application database, in order.
SCHEMA_GRANTS = (
    "GRANT USAGE ON SCHEMA public TO {role}",
    "GRANT CREATE ON SCHEMA public TO {role}",
    "ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON TABLES TO {role}",
    "ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON SEQUENCES TO {role}",
    "ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON FUNCTIONS TO {role}",
    "ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON TYPES TO {role}",
    "GRANT ALL ON SCHEMA public TO {role}",
    "GRANT ALL PRIVILEGES ON ALL TABLES IN SCHEMA public TO {role}",
    "GRANT ALL PRIVILEGES ON ALL SEQUENCES IN SCHEMA public TO {role}",
    "GRANT ALL PRIVILEGES ON ALL FUNCTIONS IN SCHEMA public TO {role}",
)


def admin_connect_kwargs(
    config: ProvisionConfig,
    dbname: str = MAINTENANCE_DATABASE,
    *,
    connect_timeout: int = 10,
) -> dict[str, Any]:
    """Keyword arguments for a superuser connection to *dbname*."""
    kwargs: dict[str, Any] = {
        "host": config.host,
        "port": config.port,
        "dbname": dbname,
        "user": config.admin_user,
        "connect_timeout": connect_timeout,
    }
    if config.admin_password:
        kwargs["password"] = config.admin_password
    return kwargs


def connect_admin(
    config: ProvisionConfig,
    dbname: str = MAINTENANCE_DATABASE,
    *,
    connect_timeout: int = 10,
) -> psycopg.Connection:
    """Open an autocommit superuser connection to *dbname*."""
    return psycopg.connect(
        **admin_connect_kwargs(config, dbname, connect_timeout=connect_timeout),
        autocommit=True,
    )


# ---------------------------------------------------------------------------
# Phase 1: existence-gated creation
# ---------------------------------------------------------------------------


def ensure_database(conn: psycopg.Connection, config: ProvisionConfig) -> bool:
    """
    Create the application database unless it exists.

    Returns:
        True if the database was created, False if it already existed.
    """
    stmt = sql.SQL("CREATE DATABASE {}").format(sql.Identifier(config.database))
    try:
        conn.execute(stmt)
    except errors.DuplicateDatabase:
        logger.info(f"Database {config.database!r} already exists")
        return False
    logger.info(f"Created database {config.database!r}")
    return True


def ensure_role(conn: psycopg.Connection, config: ProvisionConfig) -> None:
    """Create the application login role if the role catalog lacks it."""
    # DO bodies cannot take bind parameters; the role name is compared as a
    # literal and used as an identifier.
    stmt = sql.SQL(
        """
        DO $recipedb$
        BEGIN
            IF NOT EXISTS (
                SELECT FROM pg_catalog.pg_roles WHERE rolname = {name}
            ) THEN
                CREATE ROLE {role} WITH LOGIN PASSWORD {password};
            END IF;
        END
        $recipedb$
        """
    ).format(
        name=sql.Literal(config.user),
        role=sql.Identifier(config.user),
        password=sql.Literal(config.password),
    )
    try:
        conn.execute(stmt)
    except errors.DuplicateObject:
        # Another session created the role between the check and the CREATE.
        logger.info(f"Role {config.user!r} already exists")


# ---------------------------------------------------------------------------
# Phase 2: unconditional convergence
# ---------------------------------------------------------------------------


def reset_password(conn: psycopg.Connection, config: ProvisionConfig) -> None:
    """Set the role password to the configured value, every run."""
    conn.execute(
        sql.SQL("ALTER ROLE {} WITH LOGIN PASSWORD {}").format(
            sql.Identifier(config.user), sql.Literal(config.password)
        )
    )


def grant_database(conn: psycopg.Connection, config: ProvisionConfig) -> None:
    conn.execute(
        sql.SQL("GRANT ALL PRIVILEGES ON DATABASE {} TO {}").format(
            sql.Identifier(config.database), sql.Identifier(config.user)
        )
    )


def schema_grant_statements(config: ProvisionConfig) -> list[sql.Composed]:
    """Schema-level grants for the application role, in application order."""
    role = sql.Identifier(config.user)
    return [sql.SQL(template).format(role=role) for template in SCHEMA_GRANTS]


def grant_schema(conn: psycopg.Connection, config: ProvisionConfig) -> None:
    """Apply the schema-level grants inside the application database."""
    for stmt in schema_grant_statements(config):
        conn.execute(stmt)
    row = conn.execute(
        "SELECT nspacl::text FROM pg_catalog.pg_namespace WHERE nspname = 'public'"
    ).fetchone()
    logger.debug(f"public schema privileges: {row[0] if row else None}")


def ensure_role_and_grants(config: ProvisionConfig) -> None:
    """
    Run both phases against the server on ``config.port``.

    Raises:
        psycopg.Error: For any failure other than pre-existence.
    """
    logger.info("Setting up database and user...")
    with connect_admin(config) as conn:
        ensure_database(conn, config)
        ensure_role(conn, config)
        reset_password(conn, config)
        grant_database(conn, config)

    with connect_admin(config, config.database) as conn:
        grant_schema(conn, config)

    logger.info(f"Role {config.user!r} converged on database {config.database!r}")
