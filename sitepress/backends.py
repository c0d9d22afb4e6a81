"""Copy and search backends selected by availability probing."""
from __future__ import annotations

from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, Iterable, List, Protocol, Sequence, Type, runtime_checkable
import os
import re
import shutil

from .command_runner import CommandError, CommandResult, CommandRunner, SubprocessCommandRunner
from .errors import ConfigurationError, ToolUnavailableError


_BINARY_SNIFF_BYTES = 8192


@runtime_checkable
class CopyBackend(Protocol):
    """Copies the contents of one directory into another."""

    name: str

    def copy(
        self,
        source: Path,
        destination: Path,
        *,
        exclude: Sequence[str] = (),
        mirror: bool = False,
    ) -> None:
        ...


@runtime_checkable
class SearchBackend(Protocol):
    """Finds non-binary files whose content matches an extended regex."""

    name: str

    def find_files(self, root: Path, pattern: str) -> List[Path]:
        ...


def _excluded(relative: str, patterns: Sequence[str]) -> bool:
    name = relative.rsplit("/", 1)[-1]
    for pattern in patterns:
        stripped = pattern.strip("/")
        if "/" in stripped:
            if fnmatch(relative, stripped):
                return True
        elif fnmatch(name, stripped):
            return True
    return False


class RsyncCopyBackend:
    """Copy backend delegating to ``rsync``."""

    name = "rsync"
    binary = "rsync"

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or SubprocessCommandRunner()

    @classmethod
    def available(cls) -> bool:
        return shutil.which(cls.binary) is not None

    def copy(
        self,
        source: Path,
        destination: Path,
        *,
        exclude: Sequence[str] = (),
        mirror: bool = False,
    ) -> None:
        command = [self.binary, "-a"]
        if mirror:
            command.append("--delete")
        for pattern in exclude:
            command.append(f"--exclude={pattern}")
        command.extend([f"{source}/", f"{destination}/"])
        Path(destination).mkdir(parents=True, exist_ok=True)
        self._runner.run(command)


class PythonCopyBackend:
    """Copy backend implemented with :mod:`shutil`; always available."""

    name = "python"

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner

    @classmethod
    def available(cls) -> bool:
        return True

    def copy(
        self,
        source: Path,
        destination: Path,
        *,
        exclude: Sequence[str] = (),
        mirror: bool = False,
    ) -> None:
        source = Path(source)
        destination = Path(destination)
        destination.mkdir(parents=True, exist_ok=True)
        patterns = list(exclude)

        for current, dirs, files in os.walk(source):
            current_path = Path(current)
            relative_dir = current_path.relative_to(source)
            target_dir = destination / relative_dir
            target_dir.mkdir(parents=True, exist_ok=True)

            dirs[:] = [
                name for name in dirs
                if not _excluded((relative_dir / name).as_posix(), patterns)
            ]
            for name in files:
                if _excluded((relative_dir / name).as_posix(), patterns):
                    continue
                shutil.copy2(current_path / name, target_dir / name, follow_symlinks=False)

        if mirror:
            self._delete_extraneous(source, destination, patterns)

    @staticmethod
    def _delete_extraneous(source: Path, destination: Path, patterns: Sequence[str]) -> None:
        for current, dirs, files in os.walk(destination, topdown=True):
            current_path = Path(current)
            relative_dir = current_path.relative_to(destination)
            kept_dirs: List[str] = []
            for name in dirs:
                relative = (relative_dir / name).as_posix()
                if _excluded(relative, patterns):
                    continue
                if not (source / relative).is_dir():
                    shutil.rmtree(current_path / name)
                    continue
                kept_dirs.append(name)
            dirs[:] = kept_dirs
            for name in files:
                relative = (relative_dir / name).as_posix()
                if _excluded(relative, patterns):
                    continue
                if not (source / relative).exists():
                    (current_path / name).unlink()


class GrepSearchBackend:
    """Search backend delegating to ``grep -l -I -r -E``."""

    name = "grep"
    binary = "grep"

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or SubprocessCommandRunner()

    @classmethod
    def available(cls) -> bool:
        return shutil.which(cls.binary) is not None

    def find_files(self, root: Path, pattern: str) -> List[Path]:
        result: CommandResult = self._runner.run(
            [self.binary, "-l", "-I", "-r", "-E", "-e", pattern, str(root)],
            check=False,
        )
        # grep exits with 1 when nothing matched
        if result.returncode not in (0, 1):
            raise CommandError(result)
        return [Path(line) for line in result.stdout.splitlines() if line]


class PythonSearchBackend:
    """Search backend scanning files with :mod:`re`; always available."""

    name = "python"

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner

    @classmethod
    def available(cls) -> bool:
        return True

    def find_files(self, root: Path, pattern: str) -> List[Path]:
        regex = re.compile(pattern)
        root = Path(root)
        if root.is_file():
            candidates: Iterable[Path] = [root]
        elif root.is_dir():
            candidates = sorted(path for path in root.rglob("*") if path.is_file())
        else:
            return []

        matches: List[Path] = []
        for path in candidates:
            data = path.read_bytes()
            if b"\0" in data[:_BINARY_SNIFF_BYTES]:
                continue
            text = data.decode("utf-8", errors="replace")
            if any(regex.search(line) for line in text.splitlines()):
                matches.append(path)
        return matches


COPY_BACKENDS: Dict[str, Type] = {
    RsyncCopyBackend.name: RsyncCopyBackend,
    PythonCopyBackend.name: PythonCopyBackend,
}
"""Copy backends in order of preference."""

SEARCH_BACKENDS: Dict[str, Type] = {
    GrepSearchBackend.name: GrepSearchBackend,
    PythonSearchBackend.name: PythonSearchBackend,
}
"""Search backends in order of preference."""


def available_backends(registry: Dict[str, Type]) -> List[str]:
    """Return the names in ``registry`` whose tool is installed."""

    return [name for name, backend in registry.items() if backend.available()]


def _select(registry: Dict[str, Type], name: str, kind: str, runner: CommandRunner | None):
    if name == "auto":
        available = available_backends(registry)
        if not available:
            raise ToolUnavailableError(kind, f"No {kind} backend is available")
        return registry[available[0]](runner)
    backend = registry.get(name)
    if backend is None:
        choices = ", ".join(["auto", *registry])
        raise ConfigurationError(f"Unknown {kind} backend '{name}'. Choose from: {choices}")
    if not backend.available():
        raise ToolUnavailableError(getattr(backend, "binary", name), f"Requested {kind} backend '{name}' is not available")
    return backend(runner)


def copy_backend(name: str = "auto", runner: CommandRunner | None = None) -> CopyBackend:
    """Instantiate the copy backend called ``name`` (``"auto"`` probes in order)."""

    return _select(COPY_BACKENDS, name, "copy", runner)


def search_backend(name: str = "auto", runner: CommandRunner | None = None) -> SearchBackend:
    """Instantiate the search backend called ``name`` (``"auto"`` probes in order)."""

    return _select(SEARCH_BACKENDS, name, "search", runner)


__all__ = [
    "COPY_BACKENDS",
    "CopyBackend",
    "GrepSearchBackend",
    "PythonCopyBackend",
    "PythonSearchBackend",
    "RsyncCopyBackend",
    "SEARCH_BACKENDS",
    "SearchBackend",
    "available_backends",
    "copy_backend",
    "search_backend",
]
