"""
Header row conventions for destination tables.

Header cells read `Label [ID]`: the label is for people, the bracket token is
the canonical field key. Columns are resolved once per call from row 1 and
returned as 1-based indexes in HeaderColumns.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from ..models import FieldDescriptor, FormSchema
from ..table import TableAccessor

logger = logging.getLogger(__name__)

META_HEADERS = ["Record ID", "Created At", "Updated At", "Status", "PDF URL"]
LANGUAGE_HEADER = "Language"
TIMESTAMP_HEADER = "Timestamp"

_BRACKET_KEY_RE = re.compile(r"^(.*?)\s*\[([^\[\]]+)\]\s*$")


@dataclass
class ParsedHeader:
    raw: str
    label: str
    key: str | None = None


@dataclass
class HeaderColumns:
    """1-based column indexes; None when the table lacks the column."""

    timestamp: int | None = None
    language: int | None = None
    record_id: int | None = None
    created_at: int | None = None
    updated_at: int | None = None
    status: int | None = None
    pdf_url: int | None = None
    fields: dict[str, int] = field(default_factory=dict)


def normalize_header_token(raw) -> str:
    return str(raw or "").strip().lower()


def sanitize_header(raw) -> str:
    """
    Repair accidental nesting from older header formatting.

    "Meal ID [MP_ID] [Meal ID [MP_ID]]" -> "Meal ID [MP_ID]"
    """
    text = str(raw or "").strip()
    if not text or not text.endswith("]"):
        return text
    depth = 0
    last_open = -1
    for i in range(len(text) - 1, -1, -1):
        if text[i] == "]":
            depth += 1
        elif text[i] == "[":
            depth -= 1
            if depth == 0:
                last_open = i
                break
    if last_open <= 0:
        return text
    outer = text[:last_open].strip()
    inner = text[last_open + 1 : -1].strip()
    # Only a bracket that itself holds a bracketed header is a nesting accident.
    if "[" not in inner:
        return text
    if outer and normalize_header_token(outer) == normalize_header_token(inner):
        return outer
    return text


def parse_header(raw) -> ParsedHeader:
    text = sanitize_header(raw)
    if not text:
        return ParsedHeader(raw="", label="")
    match = _BRACKET_KEY_RE.match(text)
    if not match:
        return ParsedHeader(raw=text, label=text)
    key = match.group(2).strip()
    return ParsedHeader(raw=text, label=match.group(1).strip(), key=key or None)


def format_header(label: str, field_id: str) -> str:
    """`Label [ID]`, never double-wrapping an already formatted label or id."""
    raw_label = sanitize_header(label)
    raw_id = sanitize_header(field_id)
    id_key = (parse_header(raw_id).key or raw_id).strip()
    if not id_key:
        return raw_label
    parsed_label = parse_header(raw_label)
    if parsed_label.key and normalize_header_token(parsed_label.key) == normalize_header_token(id_key):
        base = parsed_label.label or raw_label or id_key
        return f"{base} [{id_key}]"
    return f"{raw_label or id_key} [{id_key}]"


def find_header(headers: list[str], candidates: list[str]) -> int | None:
    """
    1-based column of the first header matching a candidate (case-insensitive).

    Exact matches win over prefix matches so "Status" is not shadowed by a
    "Status note [NOTE]" field column.
    """
    lowered = [normalize_header_token(h) for h in headers]
    needles = [normalize_header_token(c) for c in candidates if normalize_header_token(c)]
    for needle in needles:
        if needle in lowered:
            return lowered.index(needle) + 1
    for needle in needles:
        for idx, header in enumerate(lowered):
            if header.startswith(needle):
                return idx + 1
    return None


def find_field_column(headers: list[str], descriptor: FieldDescriptor) -> int | None:
    """
    Column for a field: bracket id first, then a bare id header, then the
    label, and the label only when exactly one header carries it.
    """
    parsed = [parse_header(h) for h in headers]
    for idx, p in enumerate(parsed):
        if p.key and p.key == descriptor.id:
            return idx + 1
    for idx, p in enumerate(parsed):
        if not p.key and p.raw == descriptor.id:
            return idx + 1
    label = normalize_header_token(descriptor.label_en)
    matches = [idx for idx, p in enumerate(parsed) if normalize_header_token(p.label) == label]
    if len(matches) == 1:
        return matches[0] + 1
    if len(matches) > 1:
        logger.warning(f"Ambiguous label header for field {descriptor.id}: {len(matches)} columns")
    return None


def resolve_columns(headers: list[str], schema: FormSchema) -> HeaderColumns:
    columns = HeaderColumns(
        timestamp=find_header(headers, ["timestamp"]),
        language=find_header(headers, ["language"]),
        record_id=find_header(headers, ["record id", "id"]),
        created_at=find_header(headers, ["created at"]),
        updated_at=find_header(headers, ["updated at"]),
        status=find_header(headers, ["status"]),
        pdf_url=find_header(headers, ["pdf url", "pdf link"]),
    )
    meta_cols = {
        c
        for c in (
            columns.timestamp,
            columns.language,
            columns.record_id,
            columns.created_at,
            columns.updated_at,
            columns.status,
            columns.pdf_url,
        )
        if c
    }
    for descriptor in schema.data_fields():
        col = find_field_column(headers, descriptor)
        if col and col not in meta_cols:
            columns.fields[descriptor.id] = col
    return columns


def read_headers(table: TableAccessor) -> list[str]:
    last_col = table.last_column()
    if last_col < 1 or table.last_row() < 1:
        return []
    return [sanitize_header(h) for h in table.get_range(1, 1, 1, last_col)[0]]


def ensure_destination(table: TableAccessor, schema: FormSchema) -> tuple[list[str], HeaderColumns]:
    """
    Make sure row 1 carries every header the schema needs.

    Missing headers are appended after the existing ones; existing columns
    never move. Returns the full header list and the resolved columns.
    """
    existing = [h for h in read_headers(table)]
    while existing and not existing[-1]:
        existing.pop()

    has_timestamp = any(normalize_header_token(h) == "timestamp" for h in existing)
    wanted: list[tuple[str, FieldDescriptor | None]] = []
    if has_timestamp:
        wanted.append((TIMESTAMP_HEADER, None))
    wanted.append((LANGUAGE_HEADER, None))
    wanted.extend((format_header(f.label_en, f.id), f) for f in schema.data_fields())
    wanted.extend((h, None) for h in META_HEADERS)

    headers = list(existing)
    added = []
    for header, descriptor in wanted:
        if descriptor is not None:
            present = find_field_column(headers, descriptor) is not None
        else:
            present = any(normalize_header_token(h) == normalize_header_token(header) for h in headers)
        if not present:
            headers.append(header)
            added.append(header)

    if added or headers != existing:
        table.set_range(1, 1, [headers])
        logger.info(f"Added {len(added)} header(s) to {table.table_id}: {added}")

    return headers, resolve_columns(headers, schema)
