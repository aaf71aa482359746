"""
Convergence tests against a real PostgreSQL server.

Opt-in: set ``RECIPEDB_LIVE_PG=1`` and point ``RECIPEDB_TEST_PORT`` (default
5432) at a server where ``RECIPEDB_TEST_ADMIN`` (default ``postgres``) can
connect over TCP as a superuser.
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path

import pytest

try:
    import psycopg

    HAS_PSYCOPG = True
except ImportError:
    HAS_PSYCOPG = False

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not HAS_PSYCOPG or os.environ.get("RECIPEDB_LIVE_PG") != "1",
        reason="set RECIPEDB_LIVE_PG=1 to run against a live PostgreSQL",
    ),
]


@pytest.fixture
def config(tmp_path: Path):
    from recipedb.config import ProvisionConfig

    suffix = uuid.uuid4().hex[:8]
    return ProvisionConfig(
        database=f"recipedb_test_{suffix}",
        user=f"recipedb_user_{suffix}",
        password="test-password",
        port=int(os.environ.get("RECIPEDB_TEST_PORT", "5432")),
        admin_user=os.environ.get("RECIPEDB_TEST_ADMIN", "postgres"),
        admin_password=os.environ.get("RECIPEDB_TEST_ADMIN_PASSWORD"),
        connection_file=tmp_path / "db_connection.txt",
        env_file=tmp_path / "postgres.env",
    )


@pytest.fixture
def cleanup(config):
    yield
    from psycopg import sql

    from recipedb.postgres.roles import connect_admin

    with connect_admin(config) as conn:
        conn.execute(
            sql.SQL("DROP DATABASE IF EXISTS {} WITH (FORCE)").format(
                sql.Identifier(config.database)
            )
        )
        conn.execute(
            sql.SQL("DROP ROLE IF EXISTS {}").format(sql.Identifier(config.user))
        )


def _converge(config) -> None:
    from recipedb.postgres.artifacts import write_artifacts
    from recipedb.postgres.roles import ensure_role_and_grants
    from recipedb.postgres.schema import apply_schema

    ensure_role_and_grants(config)
    write_artifacts(config)
    apply_schema(config)


def _snapshot(config) -> list[tuple]:
    from recipedb.postgres.artifacts import read_connection_file

    info = read_connection_file(config.connection_file)
    with psycopg.connect(info.conninfo) as conn:
        return conn.execute(
            "SELECT id::text, title, description, image_url, source_url, "
            "ingredients, instructions, tags FROM recipes ORDER BY id"
        ).fetchall()


def test_repeated_runs_converge(config, cleanup):
    _converge(config)
    first = _snapshot(config)
    artifacts = config.connection_file.read_text(), config.env_file.read_text()

    _converge(config)

    assert _snapshot(config) == first
    assert (config.connection_file.read_text(), config.env_file.read_text()) == artifacts
    assert len(first) == 3


def test_seed_edits_are_reset(config, cleanup):
    from recipedb.postgres.artifacts import read_connection_file

    _converge(config)
    info = read_connection_file(config.connection_file)
    with psycopg.connect(info.conninfo, autocommit=True) as conn:
        conn.execute(
            "UPDATE recipes SET title = 'edited' "
            "WHERE id = '00000000-0000-0000-0000-000000000001'"
        )

    _converge(config)

    titles = [row[1] for row in _snapshot(config)]
    assert titles[0] == "Retro Diner Pancakes"


def test_password_reset_on_existing_role(config, cleanup):
    from psycopg import sql

    from recipedb.postgres.roles import connect_admin

    _converge(config)
    with connect_admin(config) as conn:
        conn.execute(
            sql.SQL("ALTER ROLE {} WITH PASSWORD 'something-else'").format(
                sql.Identifier(config.user)
            )
        )

    _converge(config)

    with connect_admin(config) as conn:
        stored, matches, can_create = conn.execute(
            "SELECT rolpassword, "
            "       rolpassword = 'md5' || md5(%s || rolname), "
            "       has_schema_privilege(rolname, 'public', 'CREATE') "
            "FROM pg_authid WHERE rolname = %s",
            (config.password, config.user),
        ).fetchone()

    if stored.startswith("SCRAM-SHA-256$"):
        assert _scram_matches(stored, config.password)
    else:
        assert matches
    assert can_create
    assert len(_snapshot(config)) == 3


def _scram_matches(stored: str, password: str) -> bool:
    """Check *password* against a ``SCRAM-SHA-256$iter:salt$stored:server`` verifier."""
    import base64
    import hashlib
    import hmac

    _, params, keys = stored.split("$")
    iterations, salt = params.split(":")
    stored_key, _ = keys.split(":")
    salted = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), base64.b64decode(salt), int(iterations)
    )
    client_key = hmac.new(salted, b"Client Key", "sha256").digest()
    return hashlib.sha256(client_key).digest() == base64.b64decode(stored_key)
