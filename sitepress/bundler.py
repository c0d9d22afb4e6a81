"""Asset bundler resolving logical paths against a list of load paths."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Protocol, Sequence, Tuple, runtime_checkable
import gzip
import hashlib
import re

import zstandard as zstd

from .errors import AssetNotFoundError


TYPE_EXTENSIONS: Dict[str, Tuple[str, ...]] = {
    "javascripts": (".js",),
    "stylesheets": (".css",),
}
"""Default extensions tried when a logical path omits one."""

TEXT_TYPES = frozenset(TYPE_EXTENSIONS)

_REQUIRE_DIRECTIVE = re.compile(r"^\s*(?://|/?\*)=\s*require\s+(\S+?)\s*(?:\*/)?\s*$")
_COMMENT_LINE = re.compile(r"^\s*(?://.*|/\*.*|\*.*|)$")

ZSTD_LEVEL = 19


def _within(root: Path, path: Path) -> bool:
    return path.resolve().is_relative_to(root.resolve())


@dataclass(frozen=True, slots=True)
class BundledAsset:
    """Compiled asset content together with the names it can be written under."""

    logical_name: str
    content: bytes
    digest: str

    @property
    def digest_name(self) -> str:
        """Logical name with the content digest inserted before the extension."""

        path = PurePosixPath(self.logical_name)
        return str(path.with_name(f"{path.stem}-{self.digest}{path.suffix}"))

    def text(self) -> str:
        return self.content.decode("utf-8", errors="surrogateescape")

    def write_to(self, path: Path, *, compression: str | None = None) -> Path:
        """Write the content to ``path``, optionally ``gzip`` or ``zstd`` compressed."""

        if compression is None:
            data = self.content
        elif compression == "gzip":
            data = gzip.compress(self.content, mtime=0)
        elif compression == "zstd":
            data = zstd.ZstdCompressor(level=ZSTD_LEVEL).compress(self.content)
        else:
            raise ValueError(f"Unsupported compression: {compression}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path


@runtime_checkable
class AssetBundler(Protocol):
    """Resolves a logical path to compiled content."""

    def resolve(self, logical_path: str) -> BundledAsset:
        ...


class FileBundler:
    """Bundler reading assets from load paths on disk.

    Text assets may start with ``//= require other`` (or ``*= require other``
    inside a block comment) directives; required assets are bundled ahead of
    the requiring one, each exactly once.
    """

    def __init__(self, load_paths: Iterable[Path], asset_type: str | None = None) -> None:
        self.load_paths: List[Path] = [Path(path) for path in load_paths]
        self.asset_type = asset_type
        self.extensions: Sequence[str] = TYPE_EXTENSIONS.get(asset_type or "", ())

    def locate(self, logical_path: str) -> Tuple[Path, str]:
        """Return the file backing ``logical_path`` and its logical name.

        Only files inside one of the load paths are found; names that are
        absolute or climb out with ``..`` or ``~`` never resolve.
        """

        name = PurePosixPath(logical_path)
        if name.is_absolute() or any(part in ("..", "~") for part in name.parts):
            raise AssetNotFoundError(logical_path, "outside the load paths")

        normalized = str(name)
        for root in self.load_paths:
            names = [normalized]
            names.extend(
                f"{normalized}{extension}" for extension in self.extensions if not normalized.endswith(extension)
            )
            for candidate_name in names:
                candidate = root / candidate_name
                if candidate.is_file() and _within(root, candidate):
                    return candidate, candidate_name
        raise AssetNotFoundError(logical_path)

    def resolve(self, logical_path: str) -> BundledAsset:
        path, logical_name = self.locate(logical_path)
        if self.asset_type in TEXT_TYPES:
            content = self._bundle(path, seen=set()).encode("utf-8", errors="surrogateescape")
        else:
            content = path.read_bytes()
        digest = hashlib.sha1(content).hexdigest()
        return BundledAsset(logical_name=logical_name, content=content, digest=digest)

    def _bundle(self, path: Path, *, seen: set[Path]) -> str:
        resolved = path.resolve()
        if resolved in seen:
            return ""
        seen.add(resolved)

        lines = path.read_text(encoding="utf-8", errors="surrogateescape").splitlines(keepends=True)
        required: List[str] = []
        for index, line in enumerate(lines):
            match = _REQUIRE_DIRECTIVE.match(line)
            if match:
                required.append(match.group(1))
                lines[index] = ""
                continue
            if not _COMMENT_LINE.match(line):
                break

        parts: List[str] = []
        for dependency in required:
            dependency_path, _ = self.locate(dependency)
            bundled = self._bundle(dependency_path, seen=seen)
            if bundled:
                parts.append(bundled if bundled.endswith("\n") else f"{bundled}\n")
        parts.append("".join(lines))
        return "".join(parts)


__all__ = [
    "AssetBundler",
    "BundledAsset",
    "FileBundler",
    "TYPE_EXTENSIONS",
]
