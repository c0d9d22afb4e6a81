"""Locating, decoding and merging site manifests."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence
import json
import tomllib

import yaml

from .errors import ConfigurationError


ConfigLoader = Callable[[Any], Any]


FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".yml": yaml.safe_load,
    ".yaml": yaml.safe_load,
    ".json": json.load,
    ".toml": tomllib.load,
}
"""Manifest decoders keyed by file suffix, in lookup order."""

_BINARY_SUFFIXES = frozenset({".toml"})


def load_config_file(path: Path) -> Dict[str, Any]:
    """Decode the manifest at ``path``.

    An empty document is an empty manifest. Anything other than a mapping at
    the root is rejected.
    """

    suffix = path.suffix.lower()
    if suffix not in FILE_LOADERS:
        raise ConfigurationError(
            f"Cannot read manifest {path}: unsupported suffix '{suffix}' "
            f"(expected one of {', '.join(FILE_LOADERS)})"
        )

    if suffix in _BINARY_SUFFIXES:
        with path.open("rb") as handle:
            data = FILE_LOADERS[suffix](handle)
    else:
        with path.open("r", encoding="utf-8") as handle:
            data = FILE_LOADERS[suffix](handle)

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Manifest {path} must be a mapping, not {type(data).__name__}")
    return dict(data)


def find_config_file(directory: Path, name: str) -> Path | None:
    """Return the manifest called ``name`` under ``directory``.

    When ``name`` does not exist as given, sibling files sharing its stem with
    another supported suffix are tried in :data:`FILE_LOADERS` order.
    """

    candidate = directory / name
    if candidate.is_file():
        return candidate

    stem = Path(name).stem
    for suffix in FILE_LOADERS:
        alternative = directory / f"{stem}{suffix}"
        if alternative.is_file():
            return alternative
    return None


def merge_mappings(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``base`` with ``overlay`` merged in; nested mappings merge, anything else is replaced."""

    merged: Dict[str, Any] = dict(base)
    for key, incoming in overlay.items():
        current = merged.get(key)
        both_mappings = isinstance(current, Mapping) and isinstance(incoming, Mapping)
        merged[key] = merge_mappings(current, incoming) if both_mappings else incoming
    return merged


def string_list(value: Any, *, where: str) -> List[str]:
    """Read a manifest entry holding one string or a list of strings.

    Blank entries are dropped; ``where`` names the entry in error messages.
    """

    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    elif not isinstance(value, Sequence):
        raise ConfigurationError(f"{where} must be a string or a list of strings")

    entries: List[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigurationError(f"{where} entries must be strings, got {item!r}")
        if item.strip():
            entries.append(item.strip())
    return entries


def section(config: Mapping[str, Any], *keys: str) -> Any:
    """Return the nested value at ``keys`` or ``None`` if any level is missing."""

    value: Any = config
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


__all__ = [
    "FILE_LOADERS",
    "find_config_file",
    "load_config_file",
    "merge_mappings",
    "section",
    "string_list",
]
