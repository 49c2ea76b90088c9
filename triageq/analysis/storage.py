"""
Storage analyzer: where the bytes are in a folder tree, and what to clean up.

Scans to an explicit depth, skipping hidden entries and OS/system folders.
Entries that cannot be read are skipped and counted; the scan never aborts
because of one bad file.
"""

from __future__ import annotations

import os
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from triageq.config import STORAGE_SCAN_MAX_DEPTH
from triageq.files.operations import format_size
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import log_event

logger = get_logger(__name__)

FILE_CATEGORIES: dict[str, set[str]] = {
    "Videos": {"mp4", "mov", "avi", "mkv", "webm", "flv", "m4v"},
    "Images": {"jpg", "jpeg", "png", "gif", "webp", "svg", "heic", "heif", "bmp", "ico"},
    "Archives": {"zip", "rar", "7z", "tar", "gz", "bz2", "xz"},
    "Documents": {"pdf", "doc", "docx", "txt", "rtf", "odt", "md"},
    "Spreadsheets": {"xlsx", "xls", "csv", "ods"},
    "Audio": {"mp3", "wav", "flac", "m4a", "aac", "ogg", "wma"},
    "Code": {"js", "ts", "py", "java", "cpp", "c", "html", "css", "json", "xml", "jsx", "tsx"},
    "Executables": {"exe", "msi", "dmg", "pkg", "deb", "rpm", "app"},
}
SKIPPED_DIRS = {"node_modules", "$RECYCLE.BIN", "System Volume Information", "__pycache__"}

OLD_FILE_DAYS = 180
LARGE_FILE_BYTES = 100 * 1024 * 1024
TOP_N = 20


def category_for(name: str) -> str:
    ext = Path(name).suffix.lower().lstrip(".")
    for category, extensions in FILE_CATEGORIES.items():
        if ext in extensions:
            return category
    return "Other"


@dataclass(frozen=True)
class FileItem:
    name: str
    path: str
    size: int
    modified: float
    age_days: int
    category: str


@dataclass
class CategoryStats:
    category: str
    size: int = 0
    count: int = 0
    percentage: float = 0.0


@dataclass
class StorageAnalysis:
    folder_path: str
    total_size: int
    total_files: int
    by_category: list[CategoryStats]
    largest_files: list[FileItem]
    old_files: list[FileItem]
    old_files_size: int
    suggestions: list[str]
    skipped_entries: int = 0
    scanned_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def summary(self) -> str:
        lines = [f"Total: {format_size(self.total_size)} in {self.total_files} files"]
        for stats in self.by_category[:5]:
            lines.append(f"- {stats.category}: {format_size(stats.size)} ({stats.percentage:.1f}%)")
        if self.suggestions:
            lines.append("Suggestions:")
            lines.extend(f"- {s}" for s in self.suggestions)
        return "\n".join(lines)


def _scan(directory: Path, depth: int, max_depth: int, now: float, out: list[FileItem]) -> int:
    """Collect files under directory. Returns the number of entries skipped on error."""
    if depth > max_depth:
        return 0
    skipped = 0
    try:
        entries = list(os.scandir(directory))
    except OSError as e:
        logger.warning("Cannot read directory %s: %s", directory, e)
        return 1

    for entry in entries:
        if entry.name.startswith(".") or entry.name in SKIPPED_DIRS:
            continue
        try:
            if entry.is_dir(follow_symlinks=False):
                skipped += _scan(Path(entry.path), depth + 1, max_depth, now, out)
            elif entry.is_file(follow_symlinks=False):
                stat = entry.stat(follow_symlinks=False)
                out.append(
                    FileItem(
                        name=entry.name,
                        path=entry.path,
                        size=stat.st_size,
                        modified=stat.st_mtime,
                        age_days=int((now - stat.st_mtime) // 86400),
                        category=category_for(entry.name),
                    )
                )
        except OSError:
            skipped += 1
    return skipped


def analyze_storage(path: Path, max_depth: int = STORAGE_SCAN_MAX_DEPTH) -> StorageAnalysis:
    """
    Scan path (to max_depth levels below it) and summarize usage.

    Raises:
        NotADirectoryError: If path is not a directory
    """
    if not path.is_dir():
        raise NotADirectoryError(f"Not a directory: {path}")

    now = time.time()
    files: list[FileItem] = []
    skipped = _scan(path, 0, max(0, max_depth), now, files)
    total = sum(f.size for f in files)

    categories: dict[str, CategoryStats] = {}
    for item in files:
        stats = categories.setdefault(item.category, CategoryStats(item.category))
        stats.size += item.size
        stats.count += 1
    by_category = sorted(categories.values(), key=lambda s: s.size, reverse=True)
    for stats in by_category:
        stats.percentage = (stats.size / total * 100) if total else 0.0

    by_size = sorted(files, key=lambda f: f.size, reverse=True)
    old_files = [f for f in by_size if f.age_days > OLD_FILE_DAYS][:TOP_N]
    old_size = sum(f.size for f in old_files)

    suggestions: list[str] = []
    if old_size > LARGE_FILE_BYTES:
        suggestions.append(f"{format_size(old_size)} in files older than 6 months")
    large = [f for f in files if f.size > LARGE_FILE_BYTES]
    if len(large) > 5:
        suggestions.append(f"{len(large)} files larger than 100 MB")
    if by_category and by_category[0].percentage > 40:
        top = by_category[0]
        suggestions.append(f"{top.category} files use {top.percentage:.0f}% of space")
    if len(files) > 1000:
        suggestions.append(f"{len(files)} files total, consider organizing into folders")

    log_event("storage.analyzed", files=len(files), total_bytes=total, skipped=skipped)
    return StorageAnalysis(
        folder_path=str(path),
        total_size=total,
        total_files=len(files),
        by_category=by_category,
        largest_files=by_size[:TOP_N],
        old_files=old_files,
        old_files_size=old_size,
        suggestions=suggestions,
        skipped_entries=skipped,
    )
