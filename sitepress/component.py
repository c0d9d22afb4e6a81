"""Locally stored component bundles copied into their install location."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import shutil

from .errors import PreconditionError


@dataclass(slots=True)
class Component:
    """A subtree kept apart from where it is installed.

    For example ``_components/my_app/templates`` may be installed to
    ``apps/my_app/templates`` after ``apps/my_app`` is pulled in as an
    external repository.
    """

    source_path: Path | None = None
    install_path: Path | None = None

    def install(self) -> None:
        """Copy every entry of :attr:`source_path` into :attr:`install_path`."""

        if not self.source_path:
            raise PreconditionError("Component source_path is not set")
        if not self.install_path:
            raise PreconditionError("Component install_path is not set")

        source = Path(self.source_path)
        target = Path(self.install_path)
        if not source.is_dir():
            raise PreconditionError(f"Component source {source} is not a directory")
        target.mkdir(parents=True, exist_ok=True)
        for entry in sorted(source.iterdir()):
            destination = target / entry.name
            if entry.is_dir() and not entry.is_symlink():
                shutil.copytree(entry, destination, symlinks=True, dirs_exist_ok=True)
            else:
                shutil.copy2(entry, destination, follow_symlinks=False)
