"""
Application schema and seed data.

Every statement is safe to run any number of times: DDL is guarded with
``IF NOT EXISTS`` and seed rows are upserted on fixed ids, overwriting every
mutable column. Seed content is therefore reset to the values below on each
run rather than merged with edits made elsewhere.

Statements run one at a time in autocommit mode and the first failure stops
the sequence. There is no rollback; a re-run converges.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from recipedb.config import ProvisionConfig
from recipedb.errors import SchemaError
from recipedb.postgres.artifacts import read_connection_file

logger = logging.getLogger(__name__)


# (label, statement) pairs, applied in order.
DDL_STATEMENTS: tuple[tuple[str, str], ...] = (
    ("extension:pgcrypto", "CREATE EXTENSION IF NOT EXISTS pgcrypto"),
    (
        "table:users",
        """
        CREATE TABLE IF NOT EXISTS users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            display_name TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
    ),
    (
        "table:recipes",
        """
        CREATE TABLE IF NOT EXISTS recipes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title TEXT NOT NULL,
            description TEXT,
            image_url TEXT,
            source_url TEXT,
            ingredients JSONB NOT NULL DEFAULT '[]'::jsonb,
            instructions JSONB NOT NULL DEFAULT '[]'::jsonb,
            tags TEXT[] NOT NULL DEFAULT ARRAY[]::text[],
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
    ),
    (
        "table:favorites",
        """
        CREATE TABLE IF NOT EXISTS favorites (
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            recipe_id UUID NOT NULL REFERENCES recipes(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (user_id, recipe_id)
        )
        """,
    ),
    (
        "index:idx_recipes_title_trgm_placeholder",
        "CREATE INDEX IF NOT EXISTS idx_recipes_title_trgm_placeholder "
        "ON recipes (title)",
    ),
    (
        "index:idx_favorites_user_id",
        "CREATE INDEX IF NOT EXISTS idx_favorites_user_id ON favorites (user_id)",
    ),
    (
        "index:idx_favorites_recipe_id",
        "CREATE INDEX IF NOT EXISTS idx_favorites_recipe_id ON favorites (recipe_id)",
    ),
)

UPSERT_RECIPE = """
    INSERT INTO recipes (
        id, title, description, image_url, source_url,
        ingredients, instructions, tags
    )
    VALUES (
        %(id)s, %(title)s, %(description)s, %(image_url)s, %(source_url)s,
        %(ingredients)s, %(instructions)s, %(tags)s
    )
    ON CONFLICT (id) DO UPDATE SET
        title = EXCLUDED.title,
        description = EXCLUDED.description,
        image_url = EXCLUDED.image_url,
        source_url = EXCLUDED.source_url,
        ingredients = EXCLUDED.ingredients,
        instructions = EXCLUDED.instructions,
        tags = EXCLUDED.tags
"""


@dataclass(frozen=True)
class SeedRecipe:
    """A starter recipe keyed by a fixed id."""

    id: str
    title: str
    description: str
    image_url: str
    source_url: str
    ingredients: tuple[str, ...]
    instructions: tuple[str, ...]
    tags: tuple[str, ...]

    def params(self) -> dict[str, Any]:
        """Bind parameters for :data:`UPSERT_RECIPE`."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "image_url": self.image_url,
            "source_url": self.source_url,
            "ingredients": Jsonb(list(self.ingredients)),
            "instructions": Jsonb(list(self.instructions)),
            "tags": list(self.tags),
        }


# Users and favorites are managed by the application; only recipes are seeded.
SEED_RECIPES: tuple[SeedRecipe, ...] = (
    SeedRecipe(
        id="00000000-0000-0000-0000-000000000001",
        title="Retro Diner Pancakes",
        description="Fluffy pancakes like a classic diner breakfast.",
        image_url="https://images.unsplash.com/photo-1528207776546-365bb710ee93",
        source_url="https://example.com/retro-diner-pancakes",
        ingredients=(
            "2 cups flour",
            "2 tbsp sugar",
            "2 tsp baking powder",
            "1/2 tsp salt",
            "2 eggs",
            "1 3/4 cups milk",
            "3 tbsp melted butter",
            "1 tsp vanilla",
        ),
        instructions=(
            "Whisk dry ingredients.",
            "Whisk wet ingredients.",
            "Combine just until mixed.",
            "Cook on a buttered skillet until bubbles form, flip, finish.",
        ),
        tags=("breakfast", "sweet", "quick"),
    ),
    SeedRecipe(
        id="00000000-0000-0000-0000-000000000002",
        title="Neon Nachos",
        description="Cheesy nachos with jalapeños and pico—party snack vibes.",
        image_url="https://images.unsplash.com/photo-1541592106381-b31e9677c0e5",
        source_url="https://example.com/neon-nachos",
        ingredients=(
            "Tortilla chips",
            "2 cups shredded cheese",
            "1/2 cup black beans",
            "1/4 cup pickled jalapeños",
            "Pico de gallo",
            "Sour cream",
        ),
        instructions=(
            "Layer chips, beans, and cheese on a sheet pan.",
            "Bake at 425°F (220°C) for 6–8 minutes.",
            "Top with jalapeños, pico, sour cream.",
        ),
        tags=("snack", "party", "vegetarian"),
    ),
    SeedRecipe(
        id="00000000-0000-0000-0000-000000000003",
        title="Synthwave Spaghetti",
        description="Garlicky tomato spaghetti with a punchy, bright finish.",
        image_url="https://images.unsplash.com/photo-1521389508051-d7ffb5dc8b21",
        source_url="https://example.com/synthwave-spaghetti",
        ingredients=(
            "12 oz spaghetti",
            "3 tbsp olive oil",
            "4 cloves garlic",
            "1/2 tsp chili flakes",
            "1 can crushed tomatoes",
            "Salt",
            "Black pepper",
            "Fresh basil",
        ),
        instructions=(
            "Boil pasta until al dente.",
            "Sauté garlic in olive oil with chili flakes.",
            "Add tomatoes; simmer 10 minutes.",
            "Toss pasta with sauce; finish with basil.",
        ),
        tags=("dinner", "pasta", "quick"),
    ),
)


def _execute(
    conn: psycopg.Connection,
    label: str,
    statement: str,
    params: dict[str, Any] | None = None,
) -> None:
    try:
        conn.execute(statement, params)
    except psycopg.Error as e:
        raise SchemaError(label, e.sqlstate, str(e).strip()) from e
    logger.debug(f"Applied {label}")


def apply_schema(
    config: ProvisionConfig,
    *,
    connection_file: Path | None = None,
) -> int:
    """
    Apply the schema and seed rows as the application role.

    Connection parameters are read back from the connection file rather than
    taken from *config*, so the artifact is what gets exercised.

    Returns:
        Number of statements executed.

    Raises:
        ProvisionError: If the connection file is missing or malformed.
        SchemaError: On connection failure or the first failing statement.
    """
    info = read_connection_file(connection_file or config.connection_file)
    logger.info("Applying application schema + seed data (idempotent)...")

    try:
        conn = psycopg.connect(info.conninfo, autocommit=True)
    except psycopg.Error as e:
        raise SchemaError("connect", e.sqlstate, str(e).strip()) from e

    count = 0
    with conn:
        for label, statement in DDL_STATEMENTS:
            _execute(conn, label, statement)
            count += 1
        for recipe in SEED_RECIPES:
            _execute(conn, f"seed:{recipe.id}", UPSERT_RECIPE, recipe.params())
            count += 1

    logger.info("Schema + seed complete.")
    return count
