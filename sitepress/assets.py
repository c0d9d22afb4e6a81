"""Asset tag scanning, compilation and source rewriting.

Asset tags embedded in arbitrary source files are replaced with the path of
the compiled asset, or with its compiled content when the inline keyword is
used. With the type set to ``javascripts``::

    [% javascript app %]             -> compiled/app-9413c7f1...c18d93878.js
    [% javascript lib/jquery %]      -> compiled/lib/jquery-e2a8cde3...c94729e0d1.js
    [% javascript inline tracking %] -> <compiled source of tracking.js>
"""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path, PurePosixPath
from typing import Any, List, Mapping, Sequence
import re

from .backends import PythonSearchBackend, SearchBackend
from .bundler import AssetBundler, BundledAsset, FileBundler
from .console import BuildConsole, Console
from .errors import AssetNotFoundError, ConfigurationError


GLOBAL_ONLY_OPTIONS = frozenset({"src_pre", "src_post"})
"""Options that apply to every asset type and cannot be overridden per type."""

_ERE_SPECIAL = re.compile(r"([.\[\]{}()\\*+?^$|])")


@dataclass(frozen=True, slots=True)
class AssetOptions:
    """Options for one asset type, built by merging overrides onto defaults."""

    # Directory, relative to the build root, receiving compiled assets.
    output: str | None = None
    # Prefix for substituted asset paths, e.g. ``https://cdn.example.com/``.
    cdn: str = ""
    # Keyword marking a tag whose compiled content is inlined.
    inline: str = "inline"
    gzip: bool = False
    zstd: bool = False
    hash: bool = True
    # Raise instead of warning when a tag cannot be resolved.
    strict: bool = False
    src_pre: str = "[%"
    src_post: str = "%]"

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(item.name for item in fields(cls))

    def merged(self, overrides: Mapping[str, Any] | None) -> "AssetOptions":
        """Return a copy with ``overrides`` applied; unknown keys are rejected."""

        if not overrides:
            return self
        allowed = self.field_names()
        unknown = sorted(str(key) for key in overrides if key not in allowed)
        if unknown:
            raise ConfigurationError(f"bad option in config: {', '.join(unknown)}")
        values = dict(overrides)
        for key in ("gzip", "zstd", "hash", "strict"):
            if key in values:
                values[key] = bool(values[key])
        for key in ("cdn", "inline", "src_pre", "src_post"):
            if key in values:
                values[key] = "" if values[key] is None else str(values[key])
        if "output" in values and values["output"] is not None:
            values["output"] = str(values["output"])
        return replace(self, **values)


def singularize(word: str) -> str:
    """Return the singular form used in tags (``javascripts`` -> ``javascript``)."""

    if word.endswith("ies") and len(word) > 3:
        return f"{word[:-3]}y"
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def _ere_escape(text: str) -> str:
    # valid for both POSIX extended regexes and Python's re module
    return _ERE_SPECIAL.sub(r"\\\1", text)


def tag_search_pattern(asset_type: str | None, options: AssetOptions) -> str:
    """Extended regex matching any tag, or only tags of ``asset_type``."""

    pre = _ere_escape(options.src_pre)
    post = _ere_escape(options.src_post)
    if asset_type is None:
        return f"{pre}(.*?){post}"
    return rf"{pre}\s+{_ere_escape(singularize(asset_type))}\s+(.*?){post}"


def find_tags(
    path: Path | str,
    asset_type: str | None = None,
    options: AssetOptions | None = None,
    backend: SearchBackend | None = None,
) -> List[Path]:
    """Return the non-binary files under ``path`` containing asset tags.

    Only tags of ``asset_type`` are considered when it is given.
    """

    if path is None:
        raise ValueError("must specify path")
    options = options or AssetOptions()
    backend = backend or PythonSearchBackend()
    return backend.find_files(Path(path), tag_search_pattern(asset_type, options))


class AssetPipeline:
    """Compiles one asset type and rewrites the tags referring to it."""

    def __init__(
        self,
        asset_type: str,
        *,
        directory: Path | str | None = None,
        paths: Sequence[str] = (),
        options: AssetOptions | None = None,
        bundler: AssetBundler | None = None,
        search: SearchBackend | None = None,
        console: BuildConsole | None = None,
    ) -> None:
        self.type = asset_type
        self.directory = Path(directory) if directory is not None else None
        self.paths = list(paths)
        self.options = options or AssetOptions()
        self._bundler = bundler
        self._search = search
        self._console = console or Console()

    @property
    def bundler(self) -> AssetBundler:
        if self._bundler is None:
            self._bundler = FileBundler(self.load_paths(), self.type)
        return self._bundler

    def load_paths(self) -> List[Path]:
        if self.directory is None:
            return [Path(path) for path in self.paths]
        return [self.directory / path for path in self.paths]

    @property
    def tag_regex(self) -> re.Pattern[str]:
        # e.g. \[%\s+javascript\s+(?:(inline)\s+)?(\S+)\s+%\]
        return re.compile(
            rf"{re.escape(self.options.src_pre)}\s+{re.escape(singularize(self.type))}\s+"
            rf"(?:({re.escape(self.options.inline)})\s+)?(\S+)\s+{re.escape(self.options.src_post)}"
        )

    def find_tags(self, path: Path | str | None = None) -> List[Path]:
        return find_tags(path if path is not None else self.directory, self.type, self.options, self._search)

    def write(
        self,
        target: str,
        *,
        gzip: bool | None = None,
        hash: bool | None = None,
    ) -> str:
        """Write the compiled ``target`` asset and return its path relative to the build root."""

        gzip = self.options.gzip if gzip is None else gzip
        hash = self.options.hash if hash is None else hash

        asset = self.bundler.resolve(target)
        name = PurePosixPath(asset.digest_name if hash else asset.logical_name)
        if self.options.output:
            name = PurePosixPath(self.options.output) / name

        path = self._output_path(name)
        if self.directory is not None and not path.resolve().is_relative_to(self.directory.resolve()):
            raise AssetNotFoundError(target, f"output {name} is outside the build root")
        if gzip:
            asset.write_to(path.with_name(f"{path.name}.gz"), compression="gzip")
        if self.options.zstd:
            asset.write_to(path.with_name(f"{path.name}.zst"), compression="zstd")
        asset.write_to(path)
        self._console.debug(f"Wrote asset {target} to {name}")
        return str(name)

    def inline(self, target: str) -> str:
        asset: BundledAsset = self.bundler.resolve(target)
        return asset.text()

    def update_source(self, source: str) -> str:
        """Return ``source`` with every tag of this type replaced.

        Referenced assets are written to disk. Tags naming unknown assets are
        reported and left as they are, unless the ``strict`` option is set.
        """

        def substitute(match: re.Match[str]) -> str:
            inline_keyword, target = match.group(1), match.group(2)
            try:
                if inline_keyword is not None:
                    return self.inline(target)
                written = self.write(target)
            except AssetNotFoundError as exc:
                if self.options.strict:
                    raise
                self._console.warning(str(exc))
                return match.group(0)
            return f"{self.options.cdn}{written}" if self.options.cdn else written

        return self.tag_regex.sub(substitute, source)

    def _output_path(self, name: PurePosixPath) -> Path:
        if self.directory is None:
            return Path(name)
        return self.directory / name


__all__ = [
    "AssetOptions",
    "AssetPipeline",
    "GLOBAL_ONLY_OPTIONS",
    "find_tags",
    "singularize",
    "tag_search_pattern",
]
