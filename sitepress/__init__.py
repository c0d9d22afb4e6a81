"""Turn a versioned site definition into a deployable file tree."""
from __future__ import annotations

from .assets import AssetOptions, AssetPipeline, find_tags
from .backends import CopyBackend, SearchBackend, copy_backend, search_backend
from .bundler import AssetBundler, BundledAsset, FileBundler
from .command_runner import (
    CommandError,
    CommandResult,
    CommandRunner,
    CommandTimeoutError,
    RecordingCommandRunner,
    SubprocessCommandRunner,
)
from .component import Component
from .console import Console
from .environment import BuildEnvironment, EnvironmentOptions, PopulateMode, sweep_directories
from .errors import (
    AssetNotFoundError,
    ConfigurationError,
    ExternalOperationError,
    PreconditionError,
    SitepressError,
    ToolUnavailableError,
    TransferLimitError,
)
from .external import ExternalRepository
from .repository import RepositoryCache
from .site import FromLocalPath, FromRepository, Site, SiteOrigin
from .validation import safe_path, validate_config

__version__ = "0.1.0"

__all__ = [
    "AssetBundler",
    "AssetNotFoundError",
    "AssetOptions",
    "AssetPipeline",
    "BuildEnvironment",
    "BundledAsset",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "CommandTimeoutError",
    "Component",
    "ConfigurationError",
    "Console",
    "CopyBackend",
    "EnvironmentOptions",
    "ExternalOperationError",
    "ExternalRepository",
    "FileBundler",
    "FromLocalPath",
    "FromRepository",
    "PopulateMode",
    "PreconditionError",
    "RecordingCommandRunner",
    "RepositoryCache",
    "SearchBackend",
    "Site",
    "SiteOrigin",
    "SitepressError",
    "SubprocessCommandRunner",
    "ToolUnavailableError",
    "TransferLimitError",
    "copy_backend",
    "find_tags",
    "safe_path",
    "search_backend",
    "sweep_directories",
    "validate_config",
]
