"""Working-directory lifecycle for building a site.

An environment is populated with the contents of a site's repository at a
given reference, or with a plain copy of a local directory. Its files live in
a temporary :attr:`BuildEnvironment.directory`, and a manifest
(``sitepress.yml`` by default) found at the root of that directory drives the
compile stages.

Example manifest::

    components:
      base: _components              # component paths are relative to this
      paths:
        - [my_app/templates, apps/my_app/templates]

    externals:
      server: https://github.com/example
      repositories:
        - {name: my_app, path: apps/my_app, reference: main}
        - {name: sub_app, path: apps/sub_app, reference: feature, server: https://git.example.org}

    excludes:                        # removed after compiling
      - _assets
      - apps/*/.gitignore

    persistent:                      # kept in the destination on mirrored copies
      - uploads

    assets:
      options:                       # shared by every asset type
        output: compiled
        cdn: https://cdn.example.com/
      sources:                       # scanned for asset tags
        - public
      javascripts:
        options:
          gzip: true
        paths:
          - assets/javascripts
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple
import glob
import os
import shutil
import tempfile

from .assets import AssetOptions, AssetPipeline, find_tags
from .backends import CopyBackend, SearchBackend, copy_backend, search_backend
from .command_runner import CommandRunner, SubprocessCommandRunner
from .component import Component
from .config_loader import find_config_file, load_config_file, merge_mappings, section, string_list
from .console import BuildConsole, Console
from .errors import ConfigurationError, PreconditionError
from .external import ExternalRepository
from .repository import (
    DEFAULT_CACHE_ROOT,
    DEFAULT_MAX_TRANSFER_BYTES,
    DEFAULT_TIMEOUT,
    RepositoryCache,
)
from .site import FromRepository, Site
from .validation import RESERVED_ASSET_KEYS, validate_config


class PopulateMode(str, Enum):
    AUTO = "auto"
    REPOSITORY = "repository"
    SOURCE = "source"


@dataclass(frozen=True)
class EnvironmentOptions:
    """Runtime settings of a :class:`BuildEnvironment`."""

    # Backend names from sitepress.backends, or "auto" to probe.
    search_backend: str = "auto"
    copy_backend: str = "auto"
    # Never copied into or out of the working directory.
    copy_exclude: Tuple[str, ...] = (".git", ".svn")
    repo_cache_root: Path = DEFAULT_CACHE_ROOT
    tmp_dir: Path = Path(tempfile.gettempdir())
    dir_prefix: str = "sitepress_"
    config_file: str = "sitepress.yml"
    network_timeout: float | None = DEFAULT_TIMEOUT
    max_transfer_bytes: int | None = DEFAULT_MAX_TRANSFER_BYTES
    # Applied to AssetOptions before the manifest's assets.options.
    asset_defaults: Mapping[str, Any] = field(default_factory=dict)

    def merge(self, **overrides: Any) -> "EnvironmentOptions":
        allowed = {item.name for item in fields(self)}
        unknown = sorted(key for key in overrides if key not in allowed)
        if unknown:
            raise ConfigurationError(f"Unknown environment option(s): {', '.join(unknown)}")
        if "copy_exclude" in overrides:
            overrides["copy_exclude"] = tuple(overrides["copy_exclude"])
        for key in ("repo_cache_root", "tmp_dir"):
            if key in overrides:
                overrides[key] = Path(overrides[key])
        if "asset_defaults" in overrides:
            AssetOptions().merged(overrides["asset_defaults"])
            overrides["asset_defaults"] = dict(overrides["asset_defaults"])
        return replace(self, **overrides)


class _LazyFields:
    """Values derived once per populate cycle, each with an explicit computed marker."""

    def __init__(self) -> None:
        self._values: Dict[str, Any] = {}

    def computed(self, name: str) -> bool:
        return name in self._values

    def get(self, name: str, compute: Callable[[], Any]) -> Any:
        if name not in self._values:
            self._values[name] = compute()
        return self._values[name]

    def peek(self, name: str) -> Any:
        return self._values.get(name)

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value

    def clear(self) -> None:
        self._values.clear()


def write_preserving_mtime(path: Path, contents: str) -> None:
    """Overwrite ``path`` with ``contents`` keeping its access and modification times.

    Undecodable bytes read with ``surrogateescape`` are written back unchanged.
    """

    stat = path.stat()
    path.write_bytes(contents.encode("utf-8", errors="surrogateescape"))
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns))


def sweep_directories(options: EnvironmentOptions | None = None) -> List[Path]:
    """Remove every leftover working directory under the configured temp root."""

    options = options or EnvironmentOptions()
    removed: List[Path] = []
    pattern = os.path.join(glob.escape(str(options.tmp_dir)), f"{glob.escape(options.dir_prefix)}*")
    for match in sorted(glob.glob(pattern)):
        path = Path(match)
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
            removed.append(path)
    return removed


class BuildEnvironment:
    """Temporary working copy of a site that is populated, compiled and copied out."""

    def __init__(
        self,
        site: Site | None = None,
        reference: str = "main",
        *,
        options: EnvironmentOptions | None = None,
        runner: CommandRunner | None = None,
        console: BuildConsole | None = None,
        copier: CopyBackend | None = None,
        searcher: SearchBackend | None = None,
    ) -> None:
        self._populated = False
        self._lazy = _LazyFields()
        self._site: Site | None = None
        self._reference = ""
        self._repository: RepositoryCache | None = None
        self.options = options or EnvironmentOptions()
        self._runner = runner or SubprocessCommandRunner()
        self._console = console or Console()
        self._copier = copier
        self._searcher = searcher
        self.site = site
        self.reference = reference

    @property
    def populated(self) -> bool:
        return self._populated

    @property
    def site(self) -> Site | None:
        return self._site

    @site.setter
    def site(self, site: Site | None) -> None:
        if self._populated:
            raise PreconditionError("Cannot redefine 'site' once populated")
        self._site = site

    @property
    def reference(self) -> str:
        return self._reference

    @reference.setter
    def reference(self, reference: str) -> None:
        if self._populated:
            raise PreconditionError("Cannot redefine 'reference' once populated")
        if not isinstance(reference, str):
            raise TypeError("reference must be a string")
        self._reference = reference

    @property
    def copy_backend(self) -> CopyBackend:
        if self._copier is None:
            self._copier = copy_backend(self.options.copy_backend, self._runner)
        return self._copier

    @property
    def search_backend(self) -> SearchBackend:
        if self._searcher is None:
            self._searcher = search_backend(self.options.search_backend, self._runner)
        return self._searcher

    @property
    def repository(self) -> RepositoryCache:
        """Cache entry for the site's repository, rebuilt when the locator or cache root changes."""

        source = self._site.repository if self._site is not None else None
        cache_root = self.options.repo_cache_root
        current = self._repository
        if current is None or current.source != source or current.cache_root != Path(cache_root):
            current = RepositoryCache(
                source,
                cache_root=cache_root,
                runner=self._runner,
                timeout=self.options.network_timeout,
                max_transfer_bytes=self.options.max_transfer_bytes,
                console=self._console,
            )
            self._repository = current
        return current

    @property
    def directory(self) -> Path:
        """The environment's working directory, created on first access."""

        return self._lazy.get("directory", self._make_directory)

    def _make_directory(self) -> Path:
        name = self._site.name if self._site is not None else ""
        tmp_dir = Path(self.options.tmp_dir)
        tmp_dir.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{self.options.dir_prefix}{name}_", dir=tmp_dir))

    def populate(self, mode: PopulateMode | str = PopulateMode.AUTO) -> "BuildEnvironment":
        """Fill the working directory from the site's repository or source directory."""

        if self._populated:
            self.cleanup()
        if self._site is None:
            raise PreconditionError("Cannot populate without 'site'")

        mode = PopulateMode(mode)
        if mode is PopulateMode.AUTO:
            is_repository = isinstance(self._site.origin, FromRepository)
            mode = PopulateMode.REPOSITORY if is_repository else PopulateMode.SOURCE

        if mode is PopulateMode.REPOSITORY:
            if not self._reference:
                raise PreconditionError("Cannot populate without 'reference'")
            if not self._site.repository:
                raise PreconditionError(f"Site '{self._site.name}' has no repository to populate from")
            self._console.info(f"Populating {self.directory} from {self._site.repository}@{self._reference}")
            self.repository.extract(self.directory, self._reference)
        else:
            source = Path(self._site.source) if self._site.source else Path(".")
            self._console.info(f"Populating {self.directory} from {source}")
            self.copy_backend.copy(source, self.directory, exclude=self.options.copy_exclude)

        self._populated = True
        return self

    def config(self, overrides: Mapping[str, Any] | None = None) -> Dict[str, Any]:
        """Return the manifest, loading and validating it on first use.

        ``overrides`` are validated and deep-merged into the cached manifest;
        merges accumulate across calls until the next populate cycle.
        """

        if not self._lazy.computed("config"):
            if not self._populated:
                self.populate()
            self._lazy.set("config", validate_config(self._load_config()))

        config: Dict[str, Any] = self._lazy.peek("config")
        if overrides:
            validate_config(overrides)
            config = merge_mappings(config, overrides)
            self._lazy.set("config", config)
        return config

    def _load_config(self) -> Dict[str, Any]:
        path = find_config_file(self.directory, self.options.config_file)
        if path is None:
            self._console.debug(f"No {self.options.config_file} in {self.directory}")
            return {}
        self._console.debug(f"Loading configuration from {path}")
        return load_config_file(path)

    @property
    def components(self) -> List[Component]:
        return self._lazy.get("components", self._load_components)

    def _load_components(self) -> List[Component]:
        settings = section(self.config(), "components")
        if not isinstance(settings, Mapping) or not settings.get("paths"):
            return []

        base = self.directory
        if settings.get("base"):
            base = self.directory / str(settings["base"])

        components: List[Component] = []
        for entry in settings["paths"]:
            if isinstance(entry, (str, bytes)) or not isinstance(entry, Sequence) or len(entry) < 2:
                raise ConfigurationError(f"components.paths entries must be [source, install] pairs: {entry!r}")
            components.append(
                Component(source_path=base / str(entry[0]), install_path=self.directory / str(entry[1]))
            )
        return components

    @property
    def externals(self) -> List[ExternalRepository]:
        return self._lazy.get("externals", self._load_externals)

    def _load_externals(self) -> List[ExternalRepository]:
        settings = section(self.config(), "externals")
        if not isinstance(settings, Mapping) or not settings.get("repositories"):
            return []

        default_server = settings.get("server")
        externals: List[ExternalRepository] = []
        for entry in settings["repositories"]:
            if isinstance(entry, Mapping):
                name = entry.get("name")
                path = entry.get("path")
                reference = entry.get("reference")
                server = entry.get("server")
            elif isinstance(entry, Sequence) and not isinstance(entry, (str, bytes)):
                name, path, reference, server = (list(entry) + [None] * 4)[:4]
            else:
                raise ConfigurationError(f"externals.repositories entries must be mappings or lists: {entry!r}")

            externals.append(
                ExternalRepository(
                    name=str(name or ""),
                    source=str(server or default_server or ""),
                    reference=str(reference or "main"),
                    install_path=self.directory / str(path) if path else None,
                    cache_root=self.options.repo_cache_root,
                    runner=self._runner,
                    timeout=self.options.network_timeout,
                    max_transfer_bytes=self.options.max_transfer_bytes,
                    console=self._console,
                )
            )
        return externals

    def _global_asset_options(self) -> AssetOptions:
        return AssetOptions().merged(self.options.asset_defaults).merged(section(self.config(), "assets", "options"))

    @property
    def assets(self) -> List[AssetPipeline]:
        return self._lazy.get("assets", self._load_assets)

    def _load_assets(self) -> List[AssetPipeline]:
        settings = section(self.config(), "assets")
        if not isinstance(settings, Mapping):
            return []

        shared = self._global_asset_options()
        pipelines: List[AssetPipeline] = []
        for asset_type, block in settings.items():
            if asset_type in RESERVED_ASSET_KEYS or not isinstance(block, Mapping):
                continue
            paths = string_list(block.get("paths"), where=f"assets.{asset_type}.paths")
            if not paths:
                continue
            pipelines.append(
                AssetPipeline(
                    str(asset_type),
                    directory=self.directory,
                    paths=paths,
                    options=shared.merged(block.get("options")),
                    search=self.search_backend,
                    console=self._console,
                )
            )
        return pipelines

    @property
    def sources_with_assets(self) -> List[Path]:
        """Files under the manifest's ``assets.sources`` containing asset tags."""

        return self._lazy.get("sources_with_assets", self._find_sources_with_assets)

    def _find_sources_with_assets(self) -> List[Path]:
        sources = string_list(section(self.config(), "assets", "sources"), where="assets.sources")
        if not sources:
            return []

        options = self._global_asset_options()
        files: List[Path] = []
        seen: set[Path] = set()
        for source in sources:
            for path in find_tags(self.directory / source, None, options, self.search_backend):
                if path not in seen:
                    seen.add(path)
                    files.append(path)
        return files

    def compile(self) -> "BuildEnvironment":
        """Run every compile stage in order: externals, components, assets, excludes."""

        self.install_externals()
        self.install_components()
        self.compile_assets()
        self.remove_excludes()
        return self

    def install_externals(self) -> "BuildEnvironment":
        for external in self.externals:
            self._console.info(f"Installing external {external.name} at {external.install_path}")
            external.install()
        return self

    def install_components(self) -> "BuildEnvironment":
        for component in self.components:
            self._console.info(f"Installing component {component.source_path} to {component.install_path}")
            component.install()
        return self

    def compile_assets(self) -> "BuildEnvironment":
        pipelines = self.assets
        for path in self.sources_with_assets:
            original = path.read_bytes().decode("utf-8", errors="surrogateescape")
            updated = original
            for pipeline in pipelines:
                updated = pipeline.update_source(updated)
            if updated != original:
                self._console.debug(f"Rewrote asset tags in {path}")
                write_preserving_mtime(path, updated)
        return self

    def remove_excludes(self) -> "BuildEnvironment":
        excludes = string_list(self.config().get("excludes"), where="excludes")
        for pattern in excludes:
            matches = sorted(glob.glob(os.path.join(glob.escape(str(self.directory)), pattern)))
            for match in matches:
                path = Path(match)
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                elif path.exists() or path.is_symlink():
                    path.unlink()
        return self

    def copy(self, destination: Path | str | None = None, *, mirror: bool = False) -> "BuildEnvironment":
        """Copy the working directory to ``destination`` (the site's path by default).

        With ``mirror`` set, destination entries missing from the working
        directory are deleted unless listed as ``persistent`` in the manifest.
        """

        if destination is None and self._site is not None:
            destination = self._site.path
        if destination is None:
            raise PreconditionError("Must specify a destination")

        exclude = list(self.options.copy_exclude)
        if mirror:
            exclude.extend(string_list(self.config().get("persistent"), where="persistent"))
        self._console.info(f"Copying {self.directory} to {destination}")
        self.copy_backend.copy(self.directory, Path(destination), exclude=exclude, mirror=mirror)
        return self

    def cleanup(self) -> "BuildEnvironment":
        """Remove the working directory and forget everything derived from it."""

        directory = self._lazy.peek("directory")
        if directory is not None and Path(directory).exists():
            shutil.rmtree(directory)
        self._lazy.clear()
        self._populated = False
        return self


__all__ = [
    "BuildEnvironment",
    "EnvironmentOptions",
    "PopulateMode",
    "sweep_directories",
    "write_preserving_mtime",
]
