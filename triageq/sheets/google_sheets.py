"""
Remote log target: append rows to a named Google Sheet.

The spreadsheet is found by title through Drive (only files this app created
are visible with the drive.file scope) and created when missing. The header
row grows as new columns appear.
"""

from __future__ import annotations

import asyncio
from typing import Any

from googleapiclient.errors import HttpError
from openpyxl.utils import get_column_letter

from triageq.gmail.auth import GoogleAuthSession
from triageq.infrastructure.retry import AdapterError, CircuitBreaker, RetryPolicy
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter, log_event

logger = get_logger(__name__)

_SPREADSHEET_MIME = "application/vnd.google-apps.spreadsheet"


class GoogleSheetsLogger:
    def __init__(self, auth: GoogleAuthSession, retry_policy: RetryPolicy | None = None) -> None:
        self.auth = auth
        self.retry_policy = retry_policy or RetryPolicy(stage="sheets")
        self.breaker = CircuitBreaker(stage="sheets", fail_max=3, reset_timeout=60.0)
        self._ids: dict[str, str] = {}

    def _execute(self, request: Any) -> Any:
        def attempt() -> Any:
            try:
                return request.execute()
            except HttpError as e:
                status = getattr(e.resp, "status", None)
                raise AdapterError(f"Sheets request failed: {e}", int(status) if status else None) from e

        return self.breaker.call(self.retry_policy.execute, attempt)

    def _find_or_create(self, drive: Any, sheets: Any, title: str, tab: str) -> str:
        if title in self._ids:
            return self._ids[title]
        escaped = title.replace("'", "\\'")
        found = self._execute(
            drive.files().list(
                q=f"name = '{escaped}' and mimeType = '{_SPREADSHEET_MIME}' and trashed = false",
                fields="files(id, name)",
                pageSize=1,
            )
        ).get("files", [])
        if found:
            spreadsheet_id = found[0]["id"]
        else:
            created = self._execute(
                sheets.spreadsheets().create(
                    body={"properties": {"title": title}, "sheets": [{"properties": {"title": tab}}]},
                    fields="spreadsheetId",
                )
            )
            spreadsheet_id = created["spreadsheetId"]
            log_event("sheets.created", title=title)
        self._ids[title] = spreadsheet_id
        return spreadsheet_id

    def _ensure_tab(self, sheets: Any, spreadsheet_id: str, tab: str) -> None:
        meta = self._execute(
            sheets.spreadsheets().get(spreadsheetId=spreadsheet_id, fields="sheets.properties.title")
        )
        titles = {s["properties"]["title"] for s in meta.get("sheets", [])}
        if tab not in titles:
            self._execute(
                sheets.spreadsheets().batchUpdate(
                    spreadsheetId=spreadsheet_id,
                    body={"requests": [{"addSheet": {"properties": {"title": tab}}}]},
                )
            )

    def append_row_sync(self, title: str, tab: str, row: dict[str, Any]) -> str:
        """
        Append row under the header of title/tab, returning the spreadsheet id.

        Side Effects:
            - May create the spreadsheet, the tab, and header columns
            - Appends one row remotely
        """
        drive = self.auth.build_service("drive", "v3")
        sheets = self.auth.build_service("sheets", "v4")
        spreadsheet_id = self._find_or_create(drive, sheets, title, tab)
        self._ensure_tab(sheets, spreadsheet_id, tab)
        values = sheets.spreadsheets().values()

        header_resp = self._execute(values.get(spreadsheetId=spreadsheet_id, range=f"'{tab}'!1:1"))
        headers: list[str] = (header_resp.get("values") or [[]])[0]
        missing = [key for key in row if key not in headers]
        if missing:
            headers = headers + missing
            self._execute(
                values.update(
                    spreadsheetId=spreadsheet_id,
                    range=f"'{tab}'!A1:{get_column_letter(len(headers))}1",
                    valueInputOption="RAW",
                    body={"values": [headers]},
                )
            )

        self._execute(
            values.append(
                spreadsheetId=spreadsheet_id,
                range=f"'{tab}'!A1",
                valueInputOption="USER_ENTERED",
                insertDataOption="INSERT_ROWS",
                body={"values": [["" if row.get(h) is None else row.get(h) for h in headers]]},
            )
        )
        counter("sheets.rows_appended")
        return spreadsheet_id

    async def append_row(self, title: str, tab: str, row: dict[str, Any]) -> str:
        return await asyncio.to_thread(self.append_row_sync, title, tab, row)
