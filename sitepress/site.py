"""Site descriptors naming what is built and where it comes from."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union


@dataclass(frozen=True, slots=True)
class FromRepository:
    locator: str


@dataclass(frozen=True, slots=True)
class FromLocalPath:
    path: Path


SiteOrigin = Union[FromRepository, FromLocalPath]


@dataclass(frozen=True, slots=True)
class Site:
    """Identity of a build target.

    ``repository`` is a git locator (URL or path) and takes precedence over
    ``source``, a plain directory. ``path`` is where the finished tree is
    copied to by default.
    """

    name: str = ""
    repository: str | None = None
    source: Path | str | None = None
    path: Path | str | None = None

    @property
    def origin(self) -> SiteOrigin:
        if self.repository:
            return FromRepository(self.repository)
        return FromLocalPath(Path(self.source) if self.source else Path("."))
