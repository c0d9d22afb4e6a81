"""Exception hierarchy shared by every sitepress component."""
from __future__ import annotations


class SitepressError(RuntimeError):
    """Base class for all sitepress failures."""


class ConfigurationError(SitepressError, ValueError):
    """Raised for unsafe paths, disallowed options or unknown backends."""


class PreconditionError(SitepressError):
    """Raised when an operation is attempted without a required value."""


class ToolUnavailableError(SitepressError):
    """Raised when a required external binary cannot be found."""

    def __init__(self, tool: str, message: str | None = None) -> None:
        super().__init__(message or f"Required tool '{tool}' is not available on PATH")
        self.tool = tool


class ExternalOperationError(SitepressError):
    """Raised when an external collaborator (git, rsync, grep) fails."""


class TransferLimitError(ExternalOperationError):
    """Raised when a repository transfer exceeds the configured size guard."""


class AssetNotFoundError(SitepressError, LookupError):
    """Raised when an asset tag references a logical path the bundler cannot resolve."""

    def __init__(self, logical_path: str, reason: str | None = None) -> None:
        message = f"asset not found: {logical_path}"
        super().__init__(f"{message} ({reason})" if reason else message)
        self.logical_path = logical_path
        self.reason = reason


__all__ = [
    "AssetNotFoundError",
    "ConfigurationError",
    "ExternalOperationError",
    "PreconditionError",
    "SitepressError",
    "ToolUnavailableError",
    "TransferLimitError",
]
