"""
Locate the installed PostgreSQL server tools.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PgBinaries:
    """
    Resolved PostgreSQL tool locations.

    Attributes:
        version: Version directory name under the install root, or ``None``
            when nothing was found there.
        bin_dir: Directory holding the tools, or ``None`` when falling back
            to ``PATH``.
    """

    version: str | None
    bin_dir: Path | None

    def tool(self, name: str) -> str:
        """Return the path for tool *name*.

        Falls back to a ``PATH`` lookup, and finally to the bare name so a
        missing installation surfaces when the command is executed.
        """
        if self.bin_dir is not None:
            return str(self.bin_dir / name)
        return shutil.which(name) or name


def locate_binaries(install_root: Path) -> PgBinaries:
    """
    Find the PostgreSQL version installed under *install_root*.

    Takes the first entry of the sorted directory listing, matching how
    Debian-style layouts (``/usr/lib/postgresql/<version>/bin``) are laid out.
    """
    install_root = Path(install_root)
    try:
        versions = sorted(p.name for p in install_root.iterdir() if p.is_dir())
    except (FileNotFoundError, NotADirectoryError):
        versions = []

    if not versions:
        logger.warning(
            f"No PostgreSQL version found under {install_root}; "
            "falling back to tools on PATH"
        )
        return PgBinaries(version=None, bin_dir=None)

    version = versions[0]
    bin_dir = install_root / version / "bin"
    logger.info(f"Found PostgreSQL version: {version}")
    logger.debug(f"PostgreSQL binaries: {bin_dir}")
    return PgBinaries(version=version, bin_dir=bin_dir)
