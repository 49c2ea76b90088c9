"""
Recoverable trash.

Files are moved (never unlinked) into <data_dir>/trash as `{ms}-{name}`.
A JSON manifest remembers where the last 100 trashed files came from so they
can be restored.
"""

from __future__ import annotations

import json
import shutil
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from triageq.config import TRASH_MANIFEST_MAX
from triageq.files.operations import unique_destination
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter

logger = get_logger(__name__)

MANIFEST_NAME = "manifest.json"


@dataclass(frozen=True)
class TrashEntry:
    original_path: str
    trash_path: str
    trashed_at: float


class TrashBin:
    def __init__(self, root: Path, max_entries: int = TRASH_MANIFEST_MAX) -> None:
        self.root = root
        self.max_entries = max_entries

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_NAME

    def entries(self) -> list[TrashEntry]:
        if not self.manifest_path.exists():
            return []
        try:
            data = json.loads(self.manifest_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Trash manifest unreadable, starting fresh: %s", e)
            return []
        return [TrashEntry(**item) for item in data]

    def _write_entries(self, entries: list[TrashEntry]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.manifest_path.write_text(
            json.dumps([asdict(e) for e in entries[-self.max_entries :]], indent=2),
            encoding="utf-8",
        )

    def move_to_trash(self, path: Path) -> TrashEntry:
        """
        Move a file or directory into the trash.

        Raises:
            FileNotFoundError: If path does not exist

        Side Effects:
            - Moves the path into the trash directory
            - Appends to the manifest (capped)
        """
        if not path.exists():
            raise FileNotFoundError(f"No such file: {path}")
        self.root.mkdir(parents=True, exist_ok=True)
        target = unique_destination(self.root / f"{int(time.time() * 1000)}-{path.name}")
        shutil.move(str(path), str(target))

        entry = TrashEntry(original_path=str(path), trash_path=str(target), trashed_at=time.time())
        entries = self.entries()
        entries.append(entry)
        self._write_entries(entries)
        counter("trash.moved")
        logger.info("Moved %s to trash", path.name)
        return entry

    def restore(self, trash_path: str) -> Path:
        """
        Put a trashed file back where it came from (suffixed if that name is taken).

        Raises:
            KeyError: If trash_path is not in the manifest
            FileNotFoundError: If the trashed file is gone
        """
        entries = self.entries()
        entry = next((e for e in entries if e.trash_path == trash_path), None)
        if entry is None:
            raise KeyError(f"Not in trash manifest: {trash_path}")
        source = Path(entry.trash_path)
        if not source.exists():
            raise FileNotFoundError(f"Trashed file missing: {source}")

        destination = unique_destination(Path(entry.original_path))
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(destination))
        self._write_entries([e for e in entries if e.trash_path != trash_path])
        counter("trash.restored")
        return destination

    def empty(self) -> int:
        """
        Permanently delete everything in the trash.

        Side Effects:
            - Removes all trashed files and the manifest
        """
        if not self.root.exists():
            return 0
        removed = 0
        for child in self.root.iterdir():
            if child.name == MANIFEST_NAME:
                continue
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()
            removed += 1
        self.manifest_path.unlink(missing_ok=True)
        return removed
