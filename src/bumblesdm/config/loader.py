"""
Load a run configuration from YAML.

A project file is merged over a ``base.yaml`` in the same directory (or an
explicit base file). String values may reference the environment as
``${VAR}`` or ``${VAR:default}``. A minimal project file needs ``project``,
``extent`` and ``occurrences.path`` / ``occurrences.species``.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml

from bumblesdm.config.settings import (
    BoundaryConfig,
    DownloadConfig,
    ExtentConfig,
    LayerConfig,
    ModelConfig,
    OccurrenceConfig,
    OutputConfig,
    PipelineConfig,
    SamplingConfig,
)

_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+)(?::(?P<default>[^}]*))?\}")

# Required dotted keys and the hint shown when one is missing
_REQUIRED = {
    "project": "a 'project' name",
    "extent": "an 'extent' (min_lon, max_lon, min_lat, max_lat)",
    "occurrences.path": "'occurrences.path'",
    "occurrences.species": "'occurrences.species'",
}

# Sections parsed straight into their pydantic model
_SECTIONS = {
    "boundary": BoundaryConfig,
    "layers": LayerConfig,
    "sampling": SamplingConfig,
    "model": ModelConfig,
    "download": DownloadConfig,
    "output": OutputConfig,
}


def expand_env(value: Any) -> Any:
    """Replace ``${VAR}`` references in every string of a YAML tree."""
    if isinstance(value, str):
        return _ENV_REF.sub(
            lambda m: os.environ.get(m.group("name"), m.group("default") or ""), value
        )
    if isinstance(value, dict):
        return {key: expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    return value


def merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into ``base``; nested mappings merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = merge(current, value)
        merged[key] = value
    return merged


def read_yaml(path: Path) -> dict[str, Any]:
    """Read one YAML file with environment references expanded."""
    with path.open(encoding="utf-8") as f:
        return expand_env(yaml.safe_load(f) or {})


def _lookup(data: dict[str, Any], dotted: str) -> Any:
    node: Any = data
    for part in dotted.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node


def _parse_extent(value: Any) -> ExtentConfig:
    """Accept a mapping or a [min_lon, max_lon, min_lat, max_lat] list."""
    if isinstance(value, dict):
        return ExtentConfig(**value)
    if isinstance(value, list | tuple) and len(value) == 4:
        keys = ("min_lon", "max_lon", "min_lat", "max_lat")
        return ExtentConfig(**dict(zip(keys, (float(v) for v in value), strict=True)))
    msg = f"Cannot parse extent from {type(value).__name__}: {value!r}"
    raise ValueError(msg)


def _base_file(config_path: Path, base_path: Path | None) -> Path | None:
    if base_path is not None:
        return base_path
    sibling = config_path.parent / "base.yaml"
    if sibling.exists() and sibling.resolve() != config_path.resolve():
        return sibling
    return None


def load_config(config_path: Path, base_path: Path | None = None) -> PipelineConfig:
    """
    Load and validate a run configuration.

    Args:
        config_path: Project YAML file.
        base_path: Base file to merge under it. Defaults to a sibling
            ``base.yaml`` when one exists.

    Returns:
        Validated PipelineConfig.

    Raises:
        ValueError: If a required key is missing or a value is invalid
            (pydantic's ValidationError is a ValueError).
    """
    base_file = _base_file(config_path, base_path)
    data = merge(read_yaml(base_file) if base_file else {}, read_yaml(config_path))

    for key, hint in _REQUIRED.items():
        if not _lookup(data, key):
            msg = f"Config must specify {hint}"
            raise ValueError(msg)

    cache_root = data.get("cache_root")
    return PipelineConfig(
        project=data["project"],
        data_root=Path(data.get("data_root", "./data")),
        cache_root=Path(cache_root) if cache_root else None,
        extent=_parse_extent(data["extent"]),
        occurrences=OccurrenceConfig(**data["occurrences"]),
        **{name: model(**(data.get(name) or {})) for name, model in _SECTIONS.items()},
    )
