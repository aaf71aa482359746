"""
recipedb: Provision a local PostgreSQL instance for the recipe application.

Locates the installed server tools, starts or reuses a server, converges the
application database, role and grants, writes connection artifacts, and
applies the schema with its seed recipes. Every step is idempotent.

Example:
    from recipedb import ProvisionConfig, provision

    result = provision(ProvisionConfig(port=5000))
    print(result.connection_command)
"""

__version__ = "0.1.0"

from recipedb.config import ProvisionConfig
from recipedb.errors import CommandError, ConfigError, ProvisionError, SchemaError
from recipedb.runner import ProvisionResult, provision

__all__ = [
    "CommandError",
    "ConfigError",
    "ProvisionConfig",
    "ProvisionError",
    "ProvisionResult",
    "SchemaError",
    "__version__",
    "provision",
]
