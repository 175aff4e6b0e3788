"""
config.py

Responsibility: build the immutable BuildConfiguration a run works from.

Inputs, lowest precedence first:
- an optional YAML project file (`source`, `dist`, `watch`, `dry_run`, `options`)
- CLI arguments

The orchestrator and everything below it treat the result as read-only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from torx.discovery import is_template_path


class ConfigurationError(ValueError):
    pass


@dataclass(frozen=True)
class BuildConfiguration:
    """Everything a build run needs; constructed once, never mutated."""

    source_folder: Path
    source_file: Path | None = None
    distribution_folder: Path | None = None
    watch: bool = False
    dry_run: bool = False
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.source_file is not None and not is_template_path(self.source_file):
            raise ConfigurationError(f"Source file is not a template: {self.source_file}")
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))

    @property
    def single_file(self) -> bool:
        return self.source_file is not None

    @property
    def watch_folder(self) -> Path:
        if self.source_file is not None:
            return self.source_file.parent
        return self.source_folder


@dataclass(frozen=True)
class ProjectFile:
    """Values read from a YAML project file; None means "not set"."""

    source: Path | None = None
    dist: Path | None = None
    watch: bool | None = None
    dry_run: bool | None = None
    options: dict[str, Any] = field(default_factory=dict)


def _optional_path(data: dict[str, Any], key: str, base: Path) -> Path | None:
    raw = data.get(key)
    if raw is None:
        return None
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigurationError(f"`{key}` must be a non-empty string when provided.")
    # Relative paths are relative to the project file, not the working directory.
    return base / raw.strip()


def _optional_bool(data: dict[str, Any], key: str) -> bool | None:
    raw = data.get(key)
    if raw is None:
        return None
    if not isinstance(raw, bool):
        raise ConfigurationError(f"`{key}` must be true or false when provided.")
    return raw


def load_project_file(path: str | Path) -> ProjectFile:
    """
    Parse a YAML project file into a `ProjectFile`.

    Recognised top-level keys:
    - source: str (template file or folder)
    - dist: str (distribution folder)
    - watch: bool
    - dry_run: bool
    - options: dict (handed to the compiler as-is)
    """
    p = Path(path)
    if not p.is_file():
        raise ConfigurationError(f"Project file does not exist: {p}")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Project file is not valid YAML: {p}") from e
    if not isinstance(data, dict):
        raise ConfigurationError("Project file must be a mapping/object at the top level.")

    options_raw = data.get("options") or {}
    if not isinstance(options_raw, dict):
        raise ConfigurationError("`options` must be an object/mapping when provided.")

    base = p.parent
    return ProjectFile(
        source=_optional_path(data, "source", base),
        dist=_optional_path(data, "dist", base),
        watch=_optional_bool(data, "watch"),
        dry_run=_optional_bool(data, "dry_run"),
        options=dict(sorted(options_raw.items(), key=lambda kv: str(kv[0]))),
    )


def make_configuration(
    *,
    source: str | Path | None,
    dist: str | Path | None = None,
    watch: bool = False,
    dry_run: bool = False,
    project: ProjectFile | None = None,
) -> BuildConfiguration:
    """
    Combine CLI values with an optional project file into a BuildConfiguration.

    A source ending in `.torx` selects single-file mode; anything else is the
    folder for batch (or watch) mode.
    """
    project = project or ProjectFile()

    source_path = Path(source) if source else project.source
    if source_path is None:
        raise ConfigurationError("At least a source file or folder is required.")
    dist_path = Path(dist) if dist else project.dist

    if is_template_path(source_path):
        if not source_path.is_file():
            raise ConfigurationError(f"No file exists at '{source_path}'")
        source_file: Path | None = source_path
        source_folder = source_path.parent
    else:
        source_file = None
        source_folder = source_path

    return BuildConfiguration(
        source_folder=source_folder,
        source_file=source_file,
        distribution_folder=dist_path,
        watch=watch or bool(project.watch),
        dry_run=dry_run or bool(project.dry_run),
        options=project.options,
    )
