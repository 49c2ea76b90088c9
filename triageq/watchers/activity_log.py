"""Workbook-backed audit trail for the folder watcher."""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Any

from triageq.observability.logging import get_logger
from triageq.sheets.workbook_log import WorkbookLogWriter
from triageq.storage.models import ActivityEntry

logger = get_logger(__name__)

ACTIVITY_SHEET = "Activity"
ACTIVITY_HEADERS = [
    "Timestamp",
    "Original Name",
    "Action",
    "Destination",
    "New Name",
    "Rule #",
    "Used AI",
    "Confidence",
    "Error",
]


def entry_to_row(entry: ActivityEntry) -> dict[str, Any]:
    return {
        "Timestamp": entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        "Original Name": entry.original_name,
        "Action": entry.action.value,
        "Destination": entry.destination or "",
        "New Name": entry.new_name or "",
        "Rule #": entry.matched_rule if entry.matched_rule is not None else "",
        "Used AI": "Yes" if entry.used_ai else "No",
        "Confidence": f"{round(entry.confidence * 100)}%" if entry.confidence is not None else "",
        "Error": entry.error or "",
    }


class ActivityLog:
    def __init__(self, path: Path, writer: WorkbookLogWriter | None = None) -> None:
        self.path = path
        self.writer = writer or WorkbookLogWriter()

    def append(self, entry: ActivityEntry) -> int:
        return self.writer.append_row(
            self.path, entry_to_row(entry), sheet_title=ACTIVITY_SHEET, headers=ACTIVITY_HEADERS
        )


def read_activity_log(
    path: Path, limit: int = 100, writer: WorkbookLogWriter | None = None
) -> list[dict[str, Any]]:
    """Most recent entries first."""
    rows = (writer or WorkbookLogWriter()).read_rows(path, ACTIVITY_SHEET)
    rows.reverse()
    return rows[:limit]


def activity_log_stats(path: Path, writer: WorkbookLogWriter | None = None) -> dict[str, Any]:
    rows = (writer or WorkbookLogWriter()).read_rows(path, ACTIVITY_SHEET)
    by_action = Counter(str(row.get("Action") or "unknown") for row in rows)
    return {
        "total": len(rows),
        "by_action": dict(by_action),
        "used_ai": sum(1 for row in rows if row.get("Used AI") == "Yes"),
        "errors": by_action.get("error", 0),
    }
