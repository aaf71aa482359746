"""
Exception types raised by recipedb.

Tolerated conditions (database or role already present) are not modelled
here: they are recognised by psycopg's SQLSTATE classes at the call site and
never surface as exceptions.
"""

from __future__ import annotations


class ProvisionError(RuntimeError):
    """Base class for fatal provisioning failures."""


class ConfigError(ProvisionError):
    """Invalid provisioning configuration."""


class CommandError(ProvisionError):
    """An external PostgreSQL tool failed or could not be executed."""

    def __init__(
        self,
        cmd: list[str],
        *,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"Command failed: {' '.join(self.cmd)}"
        if returncode is not None:
            message += f" (exit {returncode})"
        if stdout:
            message += f"\nstdout: {stdout}"
        if stderr:
            message += f"\nstderr: {stderr}"
        super().__init__(message)


class SchemaError(ProvisionError):
    """A schema or seed statement failed.

    Attributes:
        label: Short name of the statement that failed.
        sqlstate: Five-character SQLSTATE reported by the server, if any.
    """

    def __init__(self, label: str, sqlstate: str | None, detail: str) -> None:
        self.label = label
        self.sqlstate = sqlstate
        super().__init__(f"Schema step {label!r} failed [{sqlstate}]: {detail}")
