"""
discovery.py

Responsibility: decide which paths are template sources and find all of them
under a directory tree.

Rules:
- A template source is a file whose suffix is exactly `.torx`.
- The walk uses an explicit worklist of pending directories (no recursion).
- Symlinked directories are not followed.
- A directory that cannot be listed is an error, never a silent omission.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

from torx import TEMPLATE_EXTENSION


class DiscoveryError(OSError):
    pass


def is_template_path(path: str | Path) -> bool:
    return Path(path).suffix == TEMPLATE_EXTENSION


def iter_sources(root: str | Path) -> Iterator[Path]:
    """
    Lazily yield every template source reachable from root, at any depth.

    Raises DiscoveryError naming the directory that could not be listed.
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise DiscoveryError(f"Source folder not found: {root_path}")

    pending = [root_path]
    while pending:
        directory = pending.pop()
        try:
            with os.scandir(directory) as entries:
                listed = list(entries)
        except OSError as e:
            raise DiscoveryError(f"Could not list directory {directory}: {e.strerror or e}") from e

        for entry in listed:
            if entry.is_dir(follow_symlinks=False):
                pending.append(Path(entry.path))
            elif entry.is_file() and is_template_path(entry.name):
                yield Path(entry.path)


def discover(root: str | Path) -> list[Path]:
    """
    Return all template sources under root, sorted and without duplicates.
    """
    return sorted(set(iter_sources(root)))
