"""Destinations for finished packages.

A sink receives a complete ``Package`` and makes it available to the
user. The service writes packages into its export directory and serves
them from there; ``MemorySink`` keeps them in a dict for tests and
embedding.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Protocol

from .models import Package

logger = logging.getLogger(__name__)


class SaveSink(Protocol):
    def save(self, package: Package, subdir: str = "") -> str:
        """Deliver ``package`` and return where it can be found."""
        ...


class DirectorySink:
    """Write packages below ``root``, one sub-directory per job."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def save(self, package: Package, subdir: str = "") -> str:
        dest_dir = self.root / subdir if subdir else self.root
        dest_dir.mkdir(parents=True, exist_ok=True)
        path = dest_dir / package.filename
        # Write to a temporary name first so readers never see a partial file.
        tmp_path = path.with_name(path.name + ".part")
        with open(tmp_path, "wb") as f:
            f.write(package.data)
        os.replace(tmp_path, path)
        logger.info("Saved %s (%d bytes)", path, len(package.data))
        return str(path)


class MemorySink:
    def __init__(self) -> None:
        self.packages: Dict[str, Package] = {}

    def save(self, package: Package, subdir: str = "") -> str:
        name = f"{subdir}/{package.filename}" if subdir else package.filename
        self.packages[name] = package
        return name
