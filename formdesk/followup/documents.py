"""
In-memory documents and template rendering.

A Document has header, body and footer segments, each an ordered list of
Paragraph and Table elements. Rendering works on a deep copy:

1. Tables holding `{{GROUP_TABLE(GROUP.FIELD)}}` are replaced by one copy per
   distinct FIELD value, each filled with the matching rows only.
2. Table rows whose tokens reference exactly one group path
   (`{{GROUP.FIELD}}`, `{{GROUP.SUB.FIELD}}`) are cloned once per data row.
   Subgroup rows see their ancestors' values too.
3. Every remaining text gets the placeholder map.
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..models import FieldDescriptor, FlatRow, FlattenedRowSet, FormSchema, LineItemGroupSchema
from .formatting import apply_placeholders, format_template_value
from .lookup import LookupSource, lookup_details

logger = logging.getLogger(__name__)

_LINE_ITEM_TOKEN_RE = re.compile(r"{{\s*([A-Za-z0-9_]+(?:\s*\.\s*[A-Za-z0-9_]+)+)\s*}}")
_GROUP_TABLE_RE = re.compile(r"{{\s*GROUP_TABLE\s*\(\s*([A-Za-z0-9_.\s]+?)\s*\)\s*}}", re.IGNORECASE)
_ALWAYS_SHOW_RE = re.compile(r"{{\s*ALWAYS_SHOW\s*\((?:[^{}]*)\)\s*}}", re.IGNORECASE)


# =============================================================================
# DOCUMENT MODEL
# =============================================================================


@dataclass
class Paragraph:
    text: str = ""


@dataclass
class TableRow:
    cells: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\t".join(self.cells)


@dataclass
class Table:
    rows: list[TableRow] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(r.text for r in self.rows)


Element = Paragraph | Table


@dataclass
class Document:
    id: str
    name: str = ""
    header: list[Element] = field(default_factory=list)
    body: list[Element] = field(default_factory=list)
    footer: list[Element] = field(default_factory=list)

    def segments(self) -> list[list[Element]]:
        return [self.header, self.body, self.footer]

    def texts(self) -> list[str]:
        """Every paragraph and cell text, in document order."""
        out = []
        for segment in self.segments():
            for element in segment:
                if isinstance(element, Paragraph):
                    out.append(element.text)
                else:
                    out.extend(cell for row in element.rows for cell in row.cells)
        return out

    @property
    def plain_text(self) -> str:
        return "\n".join(self.texts())

    def map_texts(self, fn: Callable[[str], str]) -> None:
        """Rewrite every paragraph and cell text in place."""
        for segment in self.segments():
            for element in segment:
                if isinstance(element, Paragraph):
                    element.text = fn(element.text)
                else:
                    for row in element.rows:
                        row.cells = [fn(cell) for cell in row.cells]


class TemplateRepository(Protocol):
    def get(self, template_id: str) -> Document | None: ...

    def save(self, document: Document) -> None: ...


class InMemoryTemplateRepository:
    def __init__(self, documents: list[Document] | None = None):
        self._documents = {d.id: d for d in (documents or [])}

    def get(self, template_id: str) -> Document | None:
        doc = self._documents.get(template_id)
        return copy.deepcopy(doc) if doc else None

    def save(self, document: Document) -> None:
        self._documents[document.id] = copy.deepcopy(document)


# =============================================================================
# PATH RESOLUTION
# =============================================================================


@dataclass
class LineItemToken:
    raw: str
    group_id: str
    sub_path: list[str]
    field_id: str
    detail: str | None = None

    @property
    def path(self) -> str:
        return ".".join([self.group_id, *self.sub_path])


def _group_index(schema: FormSchema) -> dict[str, FieldDescriptor]:
    return {f.id.upper(): f for f in schema.group_fields()}


def parse_line_item_token(inner: str, schema: FormSchema) -> LineItemToken | None:
    """
    Split "GROUP.SUB.FIELD[.COLUMN]" against the schema.

    Leading segments naming subgroups form the path; the next segment is the
    field and an optional last one names a lookup column.
    """
    segments = [s.strip() for s in inner.split(".") if s.strip()]
    if len(segments) < 2:
        return None
    group_field = _group_index(schema).get(segments[0].upper())
    if group_field is None or group_field.group is None:
        return None
    current: LineItemGroupSchema = group_field.group
    sub_path: list[str] = []
    rest = segments[1:]
    while len(rest) > 1:
        sub = current.sub_group(rest[0])
        if sub is None:
            break
        sub_path.append(sub.id)
        current = sub
        rest = rest[1:]
    if len(rest) > 2:
        return None
    return LineItemToken(
        raw=inner,
        group_id=group_field.id,
        sub_path=sub_path,
        field_id=rest[0],
        detail=rest[1] if len(rest) == 2 else None,
    )


def _field_in_path(schema: FormSchema, token: LineItemToken) -> FieldDescriptor | None:
    """Field descriptor searched from the token's path up through its ancestors."""
    segments = [token.group_id, *token.sub_path]
    while segments:
        group = schema.resolve_group(".".join(segments))
        if group is not None:
            descriptor = group.field(token.field_id)
            if descriptor is not None:
                return descriptor
        segments = segments[:-1]
    return None


def _row_value(values: dict[str, Any], field_id: str) -> Any:
    if field_id in values:
        return values[field_id]
    target = field_id.upper()
    for key, value in values.items():
        if key.upper() == target:
            return value
    return None


def merged_rows(rows: FlattenedRowSet, path: str) -> list[dict[str, Any]]:
    return [rows.merged_values(row) for row in rows.get(path)]


# =============================================================================
# TABLE ROWS
# =============================================================================


@dataclass
class RowOverride:
    """Restricts a group path to a subset of its flattened rows."""

    path: str
    rows: list[FlatRow]

    def data_for(self, path: str, rows: FlattenedRowSet) -> list[dict[str, Any]]:
        if path.upper() == self.path.upper():
            return [rows.merged_values(r) for r in self.rows]
        if path.upper().startswith(self.path.upper() + "."):
            # Deeper rows whose ancestor at the override path was kept.
            kept = {r.index for r in self.rows}
            result = []
            for row in rows.get(path):
                anchor = next((a for a in rows.ancestors(row) if a.path.upper() == self.path.upper()), None)
                if anchor is not None and anchor.index in kept:
                    result.append(rows.merged_values(row))
            return result
        return [rows.merged_values(r) for r in self.rows]


def _render_cell(
    template: str,
    values: dict[str, Any],
    schema: FormSchema,
    lookup: LookupSource | None,
) -> str:
    def replace(match: re.Match) -> str:
        token = parse_line_item_token(match.group(1), schema)
        if token is None:
            return match.group(0)
        descriptor = _field_in_path(schema, token)
        if descriptor is None:
            return match.group(0)
        raw = _row_value(values, descriptor.id)
        if token.detail:
            if descriptor.lookup is None:
                return match.group(0)
            details = lookup_details(lookup, descriptor.lookup.source, descriptor.lookup.key_column, raw)
            return details.get(token.detail.upper(), "")
        return format_template_value(raw, descriptor.type)

    text = _ALWAYS_SHOW_RE.sub("", template)
    return _LINE_ITEM_TOKEN_RE.sub(replace, text)


def render_table_rows(
    table: Table,
    schema: FormSchema,
    rows: FlattenedRowSet,
    override: RowOverride | None = None,
    lookup: LookupSource | None = None,
) -> None:
    """Clone each line-item template row once per data row of its group path."""
    r = 0
    while r < len(table.rows):
        row = table.rows[r]
        tokens = [parse_line_item_token(m.group(1), schema) for m in _LINE_ITEM_TOKEN_RE.finditer(row.text)]
        tokens = [t for t in tokens if t is not None]
        if not tokens:
            r += 1
            continue
        if len({t.group_id for t in tokens}) != 1:
            r += 1
            continue
        sub_paths = {tuple(t.sub_path) for t in tokens if t.sub_path}
        if len(sub_paths) > 1:
            r += 1
            continue
        group_id = tokens[0].group_id
        path = ".".join([group_id, *next(iter(sub_paths))]) if sub_paths else group_id

        if override is not None and override.path.split(".")[0].upper() == group_id.upper():
            data = override.data_for(path, rows)
        else:
            data = merged_rows(rows, path)

        if not data:
            table.rows[r] = TableRow(cells=[""] * len(row.cells))
            r += 1
            continue

        template_cells = list(row.cells)
        clones = [
            TableRow(cells=[_render_cell(cell, values, schema, lookup) for cell in template_cells])
            for values in data
        ]
        table.rows[r : r + 1] = clones
        r += len(clones)


# =============================================================================
# GROUP_TABLE
# =============================================================================


def _normalize(value: Any) -> str:
    return "" if value is None else str(value).strip()


def find_group_table_directive(table: Table) -> str | None:
    match = _GROUP_TABLE_RE.search(table.text)
    return match.group(1).replace(" ", "") if match else None


def expand_group_table(
    table: Table,
    directive: str,
    schema: FormSchema,
    rows: FlattenedRowSet,
    lookup: LookupSource | None = None,
) -> list[Table]:
    """One table per distinct value of the directive field; [] removes the table."""
    token = parse_line_item_token(directive, schema)
    if token is None or token.detail:
        logger.warning(f"GROUP_TABLE directive does not resolve: {directive}")
        return []
    descriptor = _field_in_path(schema, token)
    field_id = descriptor.id if descriptor else token.field_id
    path_rows = rows.get(token.path)

    buckets: dict[str, list[FlatRow]] = {}
    displays: dict[str, str] = {}
    for flat in path_rows:
        raw = _row_value(rows.merged_values(flat), field_id)
        key = _normalize(raw)
        if not key:
            continue
        if key not in buckets:
            buckets[key] = []
            displays[key] = format_template_value(raw, descriptor.type if descriptor else None)
        buckets[key].append(flat)

    tables = []
    for key, matching in buckets.items():
        clone = copy.deepcopy(table)
        for row in clone.rows:
            row.cells = [_GROUP_TABLE_RE.sub(lambda _m, text=displays[key]: text, cell) for cell in row.cells]
        render_table_rows(clone, schema, rows, RowOverride(path=token.path, rows=matching), lookup)
        tables.append(clone)
    return tables


# =============================================================================
# DOCUMENT
# =============================================================================


def _render_segment(
    elements: list[Element],
    schema: FormSchema,
    rows: FlattenedRowSet,
    mapping: dict[str, str],
    lookup: LookupSource | None,
) -> list[Element]:
    rendered: list[Element] = []
    for element in elements:
        if isinstance(element, Paragraph):
            rendered.append(Paragraph(text=apply_placeholders(element.text, mapping)))
            continue
        directive = find_group_table_directive(element)
        tables = (
            expand_group_table(element, directive, schema, rows, lookup)
            if directive
            else [_rendered_table(element, schema, rows, lookup)]
        )
        for table in tables:
            for row in table.rows:
                row.cells = [apply_placeholders(cell, mapping) for cell in row.cells]
            rendered.append(table)
    return rendered


def _rendered_table(table: Table, schema: FormSchema, rows: FlattenedRowSet, lookup: LookupSource | None) -> Table:
    render_table_rows(table, schema, rows, lookup=lookup)
    return table


def render_document(
    document: Document,
    schema: FormSchema,
    rows: FlattenedRowSet,
    mapping: dict[str, str],
    lookup: LookupSource | None = None,
) -> Document:
    """Rendered deep copy of a template document; the template is left untouched."""
    out = copy.deepcopy(document)
    out.header = _render_segment(out.header, schema, rows, mapping, lookup)
    out.body = _render_segment(out.body, schema, rows, mapping, lookup)
    out.footer = _render_segment(out.footer, schema, rows, mapping, lookup)
    return out
