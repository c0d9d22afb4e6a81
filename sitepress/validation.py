"""Path safety checks and the declared schema of path-bearing manifest keys."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Sequence, Tuple, Union
import re

from .assets import GLOBAL_ONLY_OPTIONS, AssetOptions
from .errors import ConfigurationError


_UNSAFE_SEGMENT = re.compile(r"(\.\./|~/)")

RESERVED_ASSET_KEYS = frozenset({"options", "sources"})


def safe_path(path: str) -> bool:
    """Return ``True`` when ``path`` is relative and free of ``../`` and ``~/``."""

    if _UNSAFE_SEGMENT.search(path):
        return False
    if path.startswith("/"):
        return False
    return True


class _Each:
    def __repr__(self) -> str:
        return "[*]"


class _AssetTypes:
    def __repr__(self) -> str:
        return "<type>"


EACH = _Each()
"""Selector segment visiting every item of a list."""

ASSET_TYPES = _AssetTypes()
"""Selector segment visiting every asset type block under ``assets``."""


@dataclass(frozen=True, slots=True)
class Field:
    """Item accessor for entries written either as mappings or as lists."""

    key: str
    index: int


Segment = Union[str, int, Field, _Each, _AssetTypes]


@dataclass(frozen=True, slots=True)
class PathSelector:
    segments: Tuple[Segment, ...]

    def describe(self) -> str:
        parts = []
        for segment in self.segments:
            if isinstance(segment, Field):
                parts.append(segment.key)
            else:
                parts.append(str(segment) if not isinstance(segment, int) else f"[{segment}]")
        return ".".join(parts).replace(".[", "[")


PATH_SCHEMA: Tuple[PathSelector, ...] = (
    PathSelector(("excludes", EACH)),
    PathSelector(("persistent", EACH)),
    PathSelector(("components", "base")),
    PathSelector(("components", "paths", EACH, 0)),
    PathSelector(("components", "paths", EACH, 1)),
    PathSelector(("externals", "repositories", EACH, Field("path", 1))),
    PathSelector(("assets", "options", "output")),
    PathSelector(("assets", "sources", EACH)),
    PathSelector(("assets", ASSET_TYPES, "paths", EACH)),
    PathSelector(("assets", ASSET_TYPES, "options", "output")),
)
"""Every manifest location holding a path relative to the working directory."""


def _children(value: Any, segment: Segment) -> Iterator[Any]:
    if value is None:
        return
    if segment is EACH:
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            yield from value
        elif isinstance(value, str):
            yield value
        return
    if segment is ASSET_TYPES:
        if isinstance(value, Mapping):
            for key, block in value.items():
                if key not in RESERVED_ASSET_KEYS:
                    yield block
        return
    if isinstance(segment, Field):
        if isinstance(value, Mapping):
            if segment.key in value:
                yield value[segment.key]
        elif isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            if len(value) > segment.index:
                yield value[segment.index]
        return
    if isinstance(segment, int):
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)) and len(value) > segment:
            yield value[segment]
        return
    if isinstance(value, Mapping) and segment in value:
        yield value[segment]


def select(config: Mapping[str, Any], selector: PathSelector) -> Iterator[Any]:
    """Yield every value in ``config`` addressed by ``selector``."""

    values: list[Any] = [config]
    for segment in selector.segments:
        values = [child for value in values for child in _children(value, segment)]
    yield from values


def _validate_asset_options(options: Any, *, where: str, per_type: bool) -> None:
    if options is None:
        return
    if not isinstance(options, Mapping):
        raise ConfigurationError(f"bad option in config: {where} must be a mapping")
    allowed = AssetOptions.field_names()
    for key in options:
        if key not in allowed:
            raise ConfigurationError(f"bad option in config: '{key}' is not allowed in {where}")
        if per_type and key in GLOBAL_ONLY_OPTIONS:
            raise ConfigurationError(
                f"bad option in config: '{key}' can only be set in assets.options, not in {where}"
            )


def validate_config(config: Mapping[str, Any]) -> Mapping[str, Any]:
    """Check every path-bearing key and asset option of ``config``.

    Raises :class:`ConfigurationError` for the first violation found.
    """

    for selector in PATH_SCHEMA:
        for value in select(config, selector):
            if value is None:
                continue
            if not isinstance(value, str) or not safe_path(value):
                raise ConfigurationError(f"bad path in config: {selector.describe()} = {value!r}")

    assets = config.get("assets")
    if isinstance(assets, Mapping):
        _validate_asset_options(assets.get("options"), where="assets.options", per_type=False)
        for key, block in assets.items():
            if key in RESERVED_ASSET_KEYS or not isinstance(block, Mapping):
                continue
            _validate_asset_options(block.get("options"), where=f"assets.{key}.options", per_type=True)

    return config


__all__ = [
    "ASSET_TYPES",
    "EACH",
    "Field",
    "PATH_SCHEMA",
    "PathSelector",
    "RESERVED_ASSET_KEYS",
    "safe_path",
    "select",
    "validate_config",
]
