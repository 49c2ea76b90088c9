"""Filesystem helpers shared by the watcher, the pending queue, and agent tools."""

from __future__ import annotations

import shutil
from pathlib import Path

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_size(num_bytes: int) -> str:
    """Human-readable size, e.g. 1536 -> '1.5 KB'."""
    if num_bytes <= 0:
        return "0 B"
    size = float(num_bytes)
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    if unit == 0:
        return f"{int(size)} B"
    return f"{size:.1f} {_SIZE_UNITS[unit]}"


def unique_destination(path: Path) -> Path:
    """First free path among `name.ext`, `name (1).ext`, `name (2).ext`, ..."""
    if not path.exists():
        return path
    stem, suffix = path.stem, path.suffix
    n = 1
    while True:
        candidate = path.with_name(f"{stem} ({n}){suffix}")
        if not candidate.exists():
            return candidate
        n += 1


def move_without_overwrite(source: Path, destination: Path) -> Path:
    """
    Move source to destination, picking a suffixed name if destination is taken.

    Returns:
        The path the file ended up at

    Side Effects:
        - Creates destination's parent directories
        - Moves the file (copy+delete across devices)
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    final = unique_destination(destination)
    shutil.move(str(source), str(final))
    return final


def is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True
