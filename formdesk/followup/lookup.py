"""
External reference sources (data sources) consulted during rendering.

A source is a named list of row mappings. Lookups match case-insensitively
and never raise: any failure reads as "no match" and is reported through
debug_log.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Protocol

from ..observability import debug_log
from ..store.headers import parse_header
from ..table import Workbook

logger = logging.getLogger(__name__)


class LookupSource(Protocol):
    def rows(self, source: str) -> list[dict[str, Any]]: ...


class InMemoryLookup:
    def __init__(self, sources: dict[str, list[dict[str, Any]]] | None = None):
        self.sources = {k: list(v) for k, v in (sources or {}).items()}

    def rows(self, source: str) -> list[dict[str, Any]]:
        return self.sources.get(source, [])


class TableLookup:
    """Rows of a workbook table keyed by header (bracket id when present, else label)."""

    def __init__(self, workbook: Workbook):
        self.workbook = workbook
        self._cache: dict[str, list[dict[str, Any]]] = {}

    def rows(self, source: str) -> list[dict[str, Any]]:
        if source in self._cache:
            return self._cache[source]
        table = self.workbook.table(source)
        last_row, last_col = table.last_row(), table.last_column()
        if last_row < 2 or last_col < 1:
            self._cache[source] = []
            return []
        grid = table.get_range(1, 1, last_row, last_col)
        keys = [(parse_header(h).key or parse_header(h).label) for h in grid[0]]
        rows = [{k: v for k, v in zip(keys, r, strict=False) if k} for r in grid[1:]]
        self._cache[source] = rows
        return rows


def _norm(value: Any) -> str:
    return "" if value is None else str(value).strip().lower()


def _text(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def find_row(lookup: LookupSource | None, source: str, key_column: str, value: Any) -> dict[str, Any] | None:
    target = _norm(value)
    if lookup is None or not source or not target:
        return None
    try:
        rows = lookup.rows(source)
    except Exception as e:
        debug_log("lookup.failed", source=source, error=str(e))
        return None
    wanted = _norm(key_column)
    for row in rows:
        if not isinstance(row, dict):
            continue
        match_key = next((k for k in row if _norm(k) == wanted), None)
        if match_key is None:
            continue
        if _norm(row[match_key]) == target:
            return row
    return None


def lookup_details(lookup: LookupSource | None, source: str, key_column: str, value: Any) -> dict[str, str]:
    """
    Full matching row with keys upper-cased (spaces become "_").

    Empty when nothing matches, so callers simply omit the detail tokens.
    """
    row = find_row(lookup, source, key_column, value)
    if not row:
        return {}
    details = {}
    for key, val in row.items():
        if val is None or val == "":
            continue
        clean = "_".join(str(key).split()).upper()
        if clean:
            details[clean] = _text(val)
    return details


def lookup_value(
    lookup: LookupSource | None, source: str, key_column: str, value: Any, value_column: str
) -> str | None:
    row = find_row(lookup, source, key_column, value)
    if not row:
        return None
    wanted = _norm(value_column)
    for key, val in row.items():
        if _norm(key) == wanted and val is not None and str(val).strip():
            return str(val).strip()
    return None
