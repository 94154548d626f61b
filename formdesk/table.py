"""
Backing table access.

A table is a 1-based grid of cells with row 1 holding headers. The store only
talks to TableAccessor; InMemoryTable backs tests and local runs and
GoogleSheetsTable maps the same calls onto the Sheets v4 values API via a
service account.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol

from . import config

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


class TableAccessor(Protocol):
    table_id: str

    def last_row(self) -> int: ...

    def last_column(self) -> int: ...

    def get_range(self, row: int, col: int, nrows: int, ncols: int) -> list[list[Any]]: ...

    def set_range(self, row: int, col: int, values: list[list[Any]]) -> None: ...

    def append_row(self, values: list[Any]) -> None: ...


class Workbook(Protocol):
    def table(self, name: str) -> TableAccessor:
        """Table by name, created empty when missing."""
        ...


# =============================================================================
# IN-MEMORY
# =============================================================================


class InMemoryTable:
    """List-of-lists grid. Reads return copies padded with empty strings."""

    def __init__(self, table_id: str = "memory", rows: list[list[Any]] | None = None):
        self.table_id = table_id
        self._rows: list[list[Any]] = [list(r) for r in (rows or [])]
        self.writes = 0

    def last_row(self) -> int:
        return len(self._rows)

    def last_column(self) -> int:
        return max((len(r) for r in self._rows), default=0)

    def get_range(self, row: int, col: int, nrows: int, ncols: int) -> list[list[Any]]:
        if row < 1 or col < 1:
            raise ValueError(f"Ranges are 1-based, got row={row} col={col}")
        out = []
        for r in range(row - 1, row - 1 + max(nrows, 0)):
            source = self._rows[r] if r < len(self._rows) else []
            cells = []
            for c in range(col - 1, col - 1 + max(ncols, 0)):
                cells.append(source[c] if c < len(source) else "")
            out.append(cells)
        return out

    def set_range(self, row: int, col: int, values: list[list[Any]]) -> None:
        if row < 1 or col < 1:
            raise ValueError(f"Ranges are 1-based, got row={row} col={col}")
        for offset, cells in enumerate(values):
            r = row - 1 + offset
            while len(self._rows) <= r:
                self._rows.append([])
            target = self._rows[r]
            needed = col - 1 + len(cells)
            if len(target) < needed:
                target.extend([""] * (needed - len(target)))
            for i, value in enumerate(cells):
                target[col - 1 + i] = value
        self.writes += 1

    def append_row(self, values: list[Any]) -> None:
        self._rows.append(list(values))
        self.writes += 1

    def rows(self) -> list[list[Any]]:
        return [list(r) for r in self._rows]


class InMemoryWorkbook:
    def __init__(self, workbook_id: str = "memory"):
        self.workbook_id = workbook_id
        self._tables: dict[str, InMemoryTable] = {}

    def table(self, name: str) -> InMemoryTable:
        if name not in self._tables:
            self._tables[name] = InMemoryTable(table_id=f"{self.workbook_id}:{name}")
        return self._tables[name]


# =============================================================================
# GOOGLE SHEETS
# =============================================================================


def _column_letter(col: int) -> str:
    letters = ""
    while col > 0:
        col, rem = divmod(col - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def a1_range(sheet: str, row: int, col: int, nrows: int, ncols: int) -> str:
    """A1 notation for a 1-based rectangle, e.g. 'Responses'!B2:D4."""
    start = f"{_column_letter(col)}{row}"
    end = f"{_column_letter(col + max(ncols, 1) - 1)}{row + max(nrows, 1) - 1}"
    quoted = sheet.replace("'", "''")
    return f"'{quoted}'!{start}:{end}"


class GoogleSheetsTable:
    """One sheet of a spreadsheet, accessed through the Sheets v4 values API."""

    def __init__(self, service, spreadsheet_id: str, sheet_name: str):
        self._service = service
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self.table_id = f"{spreadsheet_id}:{sheet_name}"

    def _values(self) -> list[list[Any]]:
        quoted = self.sheet_name.replace("'", "''")
        result = (
            self._service.spreadsheets()
            .values()
            .get(spreadsheetId=self.spreadsheet_id, range=f"'{quoted}'")
            .execute()
        )
        return result.get("values", [])

    def last_row(self) -> int:
        return len(self._values())

    def last_column(self) -> int:
        return max((len(r) for r in self._values()), default=0)

    def get_range(self, row: int, col: int, nrows: int, ncols: int) -> list[list[Any]]:
        if nrows <= 0 or ncols <= 0:
            return []
        result = (
            self._service.spreadsheets()
            .values()
            .get(
                spreadsheetId=self.spreadsheet_id,
                range=a1_range(self.sheet_name, row, col, nrows, ncols),
            )
            .execute()
        )
        values = result.get("values", [])
        padded = []
        for i in range(nrows):
            cells = list(values[i]) if i < len(values) else []
            cells.extend([""] * (ncols - len(cells)))
            padded.append(cells[:ncols])
        return padded

    def set_range(self, row: int, col: int, values: list[list[Any]]) -> None:
        if not values:
            return
        ncols = max(len(r) for r in values)
        (
            self._service.spreadsheets()
            .values()
            .update(
                spreadsheetId=self.spreadsheet_id,
                range=a1_range(self.sheet_name, row, col, len(values), ncols),
                valueInputOption="RAW",
                body={"values": values},
            )
            .execute()
        )

    def append_row(self, values: list[Any]) -> None:
        quoted = self.sheet_name.replace("'", "''")
        (
            self._service.spreadsheets()
            .values()
            .append(
                spreadsheetId=self.spreadsheet_id,
                range=f"'{quoted}'!A1",
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [values]},
            )
            .execute()
        )


class GoogleSheetsWorkbook:
    """Spreadsheet-backed workbook using service account credentials."""

    def __init__(
        self,
        spreadsheet_id: str | None = None,
        credentials_path: str | None = None,
        delegated_user: str | None = None,
    ):
        self.spreadsheet_id = spreadsheet_id or config.SPREADSHEET_ID
        self.credentials_path = credentials_path or config.SERVICE_ACCOUNT_FILE
        self.delegated_user = delegated_user or os.environ.get("FORMDESK_SHEETS_USER") or None
        self._service = None
        self._known_sheets: set[str] | None = None

    def _get_service(self):
        """Get Sheets API service using service account."""
        if self._service:
            return self._service

        try:
            from google.oauth2 import service_account
            from googleapiclient.discovery import build

            creds = service_account.Credentials.from_service_account_file(
                self.credentials_path, scopes=SHEETS_SCOPES
            )
            if self.delegated_user:
                creds = creds.with_subject(self.delegated_user)
            self._service = build("sheets", "v4", credentials=creds)
            return self._service
        except (ValueError, OSError, KeyError) as e:
            logger.error(f"Failed to get Sheets service: {e}")
            raise

    def _sheet_titles(self) -> set[str]:
        if self._known_sheets is None:
            meta = self._get_service().spreadsheets().get(spreadsheetId=self.spreadsheet_id).execute()
            self._known_sheets = {s["properties"]["title"] for s in meta.get("sheets", [])}
        return self._known_sheets

    def table(self, name: str) -> GoogleSheetsTable:
        service = self._get_service()
        if name not in self._sheet_titles():
            body = {"requests": [{"addSheet": {"properties": {"title": name}}}]}
            service.spreadsheets().batchUpdate(spreadsheetId=self.spreadsheet_id, body=body).execute()
            self._known_sheets.add(name)
            logger.info(f"Created sheet {name!r} in {self.spreadsheet_id}")
        return GoogleSheetsTable(service, self.spreadsheet_id, name)
