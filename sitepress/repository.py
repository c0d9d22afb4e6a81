"""Mirrored git repositories kept in a local cache for repeated extraction."""
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator
import fcntl
import hashlib
import re
import shutil
import tarfile
import tempfile

import pygit2

from .command_runner import CommandResult, CommandRunner, SubprocessCommandRunner
from .console import BuildConsole, Console
from .errors import PreconditionError, ToolUnavailableError, TransferLimitError


DEFAULT_CACHE_ROOT = Path(tempfile.gettempdir()) / "sitepress"
DEFAULT_TIMEOUT = 200.0
DEFAULT_MAX_TRANSFER_BYTES = 200 * 1024 * 1024

_SEPARATORS = re.compile(r"[/\\:]")
_INVALID_FILENAME_CHARS = re.compile(r'[\x00-\x1f<>"|?*]')


def clone_directory_name(source: str) -> str:
    """Return the cache directory name for ``source``.

    The name depends only on the locator string: separators become ``_`` and
    the first 11 hex characters of its sha1 keep distinct locators apart.
    """

    digest = hashlib.sha1(source.encode("utf-8")).hexdigest()[:11]
    sanitized = _INVALID_FILENAME_CHARS.sub("", _SEPARATORS.sub("_", source)).strip(" .")
    return f"repo_{sanitized}_{digest}"


class RepositoryCache:
    """Mirror clone of a single repository, updated and extracted on demand.

    Git writes go through the command line; reads use pygit2. Every operation
    touching the mirror holds an advisory lock next to it so independent
    processes sharing one cache entry do not race.
    """

    def __init__(
        self,
        source: str | None = None,
        *,
        cache_root: Path | str | None = DEFAULT_CACHE_ROOT,
        runner: CommandRunner | None = None,
        timeout: float | None = DEFAULT_TIMEOUT,
        max_transfer_bytes: int | None = DEFAULT_MAX_TRANSFER_BYTES,
        console: BuildConsole | None = None,
    ) -> None:
        self.source = source
        self.cache_root = Path(cache_root) if cache_root is not None else None
        self.timeout = timeout
        self.max_transfer_bytes = max_transfer_bytes
        self._runner = runner or SubprocessCommandRunner()
        self._console = console or Console()

    @property
    def local_clone(self) -> Path | None:
        if self.cache_root is None or self.source is None:
            return None
        return self.cache_root / clone_directory_name(self.source)

    def mirror(self) -> Path:
        """Create the mirror clone if it does not exist yet and return its path."""

        clone = self._require_clone()
        with self._locked(clone):
            self._mirror(clone)
        return clone

    def update(self, fetch: bool = True) -> Path:
        """Ensure the mirror exists and refresh its refs unless ``fetch`` is false."""

        clone = self._require_clone()
        with self._locked(clone):
            self._mirror(clone)
            if fetch:
                self._update(clone)
        return clone

    def extract(
        self,
        destination: Path | str,
        reference: str | None = None,
        *,
        update: bool = True,
    ) -> Path:
        """Write the tree at ``reference`` into ``destination``.

        ``reference`` defaults to the mirror's primary branch.
        """

        clone = self._require_clone()
        destination = Path(destination)
        with self._locked(clone):
            self._mirror(clone)
            if update:
                self._update(clone)
            if not reference:
                reference = self._primary_branch(clone)
            self._extract(clone, destination, reference)
        return destination

    def primary_branch(self) -> str:
        """Return the branch the mirror's HEAD points at."""

        clone = self._require_clone()
        return self._primary_branch(clone)

    def _require_clone(self) -> Path:
        if not self.source:
            raise PreconditionError("Must specify source.")
        clone = self.local_clone
        if clone is None:
            raise PreconditionError("Must specify cache root.")
        return clone

    @contextmanager
    def _locked(self, clone: Path) -> Iterator[None]:
        clone.parent.mkdir(parents=True, exist_ok=True)
        lock_path = clone.parent / f"{clone.name}.lock"
        with lock_path.open("a") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _git(self, args: list[str], *, cwd: Path | None = None) -> CommandResult:
        if shutil.which("git") is None:
            raise ToolUnavailableError("git")
        return self._runner.run(["git", *args], cwd=cwd, timeout=self.timeout)

    def _mirror(self, clone: Path) -> None:
        if clone.is_dir():
            return
        self._console.info(f"Mirroring {self.source} into {clone}")
        self._git(["clone", "--mirror", "--", str(self.source), str(clone)])

    def _update(self, clone: Path) -> None:
        self._console.debug(f"Updating mirror {clone}")
        self._git(["--git-dir", str(clone), "remote", "update", "--prune"])

    def _primary_branch(self, clone: Path) -> str:
        repo = pygit2.Repository(str(clone))
        try:
            return repo.head.shorthand
        except pygit2.GitError:
            # unborn HEAD: read the symbolic target instead
            target = repo.lookup_reference("HEAD").target
            if isinstance(target, str) and target.startswith("refs/heads/"):
                return target[len("refs/heads/"):]
            return "HEAD"

    def _extract(self, clone: Path, destination: Path, reference: str) -> None:
        destination.mkdir(parents=True, exist_ok=True)
        self._console.info(f"Extracting {self.source}@{reference} into {destination}")
        with tempfile.TemporaryDirectory(prefix="sitepress_archive_") as scratch:
            archive = Path(scratch) / "tree.tar"
            self._git(
                [
                    "--git-dir",
                    str(clone),
                    "archive",
                    "--format=tar",
                    f"--output={archive}",
                    reference,
                ]
            )
            size = archive.stat().st_size
            if self.max_transfer_bytes is not None and size > self.max_transfer_bytes:
                raise TransferLimitError(
                    f"Archive of {self.source}@{reference} is {size} bytes, "
                    f"exceeding the limit of {self.max_transfer_bytes} bytes"
                )
            with tarfile.open(archive, "r") as handle:
                handle.extractall(destination, filter="data")


__all__ = [
    "DEFAULT_CACHE_ROOT",
    "DEFAULT_MAX_TRANSFER_BYTES",
    "DEFAULT_TIMEOUT",
    "RepositoryCache",
    "clone_directory_name",
]
