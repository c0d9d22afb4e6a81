"""Third-party repositories installed into a subpath of the site."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .command_runner import CommandRunner
from .console import BuildConsole
from .errors import PreconditionError
from .repository import (
    DEFAULT_CACHE_ROOT,
    DEFAULT_MAX_TRANSFER_BYTES,
    DEFAULT_TIMEOUT,
    RepositoryCache,
)


@dataclass
class ExternalRepository:
    """Repository ``name`` found under ``source``, installed at ``reference``."""

    name: str = ""
    source: str = ""
    reference: str = "main"
    install_path: Path | None = None
    cache_root: Path | None = DEFAULT_CACHE_ROOT
    runner: CommandRunner | None = None
    timeout: float | None = DEFAULT_TIMEOUT
    max_transfer_bytes: int | None = DEFAULT_MAX_TRANSFER_BYTES
    console: BuildConsole | None = None
    _repository: RepositoryCache | None = field(default=None, init=False, repr=False, compare=False)

    @property
    def repository_path(self) -> str:
        """Local directory ``source/name`` when it exists, otherwise a remote locator."""

        if not self.source or not self.name:
            return ""
        local = Path(self.source) / self.name
        if local.is_dir():
            return str(local)
        return f"{self.source.rstrip('/')}/{self.name}"

    @property
    def repository(self) -> RepositoryCache:
        """Cache entry for :attr:`repository_path`, rebuilt when it or the cache root changes."""

        source = self.repository_path
        cache_root = Path(self.cache_root) if self.cache_root is not None else None
        current = self._repository
        if current is None or current.source != source or current.cache_root != cache_root:
            current = RepositoryCache(
                source,
                cache_root=cache_root,
                runner=self.runner,
                timeout=self.timeout,
                max_transfer_bytes=self.max_transfer_bytes,
                console=self.console,
            )
            self._repository = current
        return current

    def install(self) -> "ExternalRepository":
        if not self.install_path:
            raise PreconditionError(f"External '{self.name}' has no install_path")
        if not self.repository_path:
            raise PreconditionError(f"External '{self.name}' needs both a name and a source")
        install_path = Path(self.install_path)
        install_path.mkdir(parents=True, exist_ok=True)
        self.repository.extract(install_path, self.reference)
        return self
