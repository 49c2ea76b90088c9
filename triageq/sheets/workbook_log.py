"""
Local .xlsx logs.

Each append reads (or creates) the workbook, adds a row under a header row,
and rewrites the file. Columns grow as new keys show up so model-proposed
rows with extra fields are never truncated. Writes to the same file are
serialized with a per-path lock because every append is a full rewrite.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font

from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter

logger = get_logger(__name__)

ID_COLUMNS = ("id", "email_id", "Email ID")

_HEADER_FONT = Font(bold=True)


class WorkbookLogWriter:
    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, path: Path) -> threading.Lock:
        key = str(path.resolve())
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def _open(self, path: Path, sheet_title: str, headers: list[str] | None) -> tuple[Any, Any]:
        if path.exists():
            workbook = load_workbook(path)
            if sheet_title in workbook.sheetnames:
                return workbook, workbook[sheet_title]
            sheet = workbook.create_sheet(sheet_title)
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            workbook = Workbook()
            sheet = workbook.active
            sheet.title = sheet_title
        if headers:
            self._write_header(sheet, headers)
        return workbook, sheet

    @staticmethod
    def _write_header(sheet: Any, headers: list[str]) -> None:
        for col, name in enumerate(headers, start=1):
            cell = sheet.cell(row=1, column=col, value=name)
            cell.font = _HEADER_FONT

    @staticmethod
    def _headers(sheet: Any) -> list[str]:
        if sheet.max_row < 1:
            return []
        return [str(c.value) for c in sheet[1] if c.value is not None]

    def append_row(
        self,
        path: Path,
        row: dict[str, Any],
        sheet_title: str = "Log",
        headers: list[str] | None = None,
    ) -> int:
        """
        Append one row, returning its 1-based row number.

        Side Effects:
            - Creates the workbook and header row if missing
            - Adds header columns for keys not seen before
            - Rewrites the .xlsx file
        """
        with self._lock_for(path):
            workbook, sheet = self._open(path, sheet_title, headers or list(row))
            current = self._headers(sheet)
            for key in row:
                if key not in current:
                    current.append(key)
            self._write_header(sheet, current)

            sheet.append([row.get(name) for name in current])
            row_number = sheet.max_row
            workbook.save(path)

        counter("workbook.rows_appended")
        return row_number

    def read_rows(self, path: Path, sheet_title: str | None = None) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        with self._lock_for(path):
            workbook = load_workbook(path, read_only=True)
            try:
                sheet = workbook[sheet_title] if sheet_title else workbook.active
                rows = list(sheet.iter_rows(values_only=True))
            finally:
                workbook.close()
        if not rows:
            return []
        headers = [str(h) if h is not None else "" for h in rows[0]]
        # empty cells are omitted, so rows written before a column existed stay sparse
        return [
            {
                headers[i]: value
                for i, value in enumerate(values)
                if i < len(headers) and headers[i] and value is not None
            }
            for values in rows[1:]
            if any(v is not None for v in values)
        ]

    def delete_rows_by_id(self, path: Path, record_id: str) -> int:
        """
        Remove every row whose id column equals record_id, in all sheets.

        Side Effects:
            - Rewrites the .xlsx file when rows were removed
        """
        if not path.exists():
            return 0
        removed = 0
        with self._lock_for(path):
            workbook = load_workbook(path)
            for sheet in workbook.worksheets:
                headers = self._headers(sheet)
                id_cols = [headers.index(name) + 1 for name in ID_COLUMNS if name in headers]
                if not id_cols:
                    continue
                # bottom-up so deletions don't shift rows still to be checked
                for row_idx in range(sheet.max_row, 1, -1):
                    values = {str(sheet.cell(row=row_idx, column=c).value or "") for c in id_cols}
                    if record_id in values:
                        sheet.delete_rows(row_idx)
                        removed += 1
            if removed:
                workbook.save(path)
            workbook.close()

        if removed:
            counter("workbook.rows_deleted", removed)
            logger.info("Removed %d row(s) for %s from %s", removed, record_id, path.name)
        return removed
