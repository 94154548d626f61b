"""
Token map for follow-up templates.

build_placeholders() produces `{{TOKEN}}` -> text for:
- record meta (RECORD_ID, FORM_KEY, CREATED_AT, UPDATED_AT, STATUS, PDF_URL, LANGUAGE)
- every field by id and by legacy label slug
- group fields per path (GROUP.FIELD, GROUP.SUB.FIELD, ...), multi-row values joined by newline
- lookup details (FIELD.COLUMN, GROUP.FIELD.COLUMN)
- LABEL(...), CONSOLIDATED(...), SUM(...), COUNT(...)
- any raw record value not covered above
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from ..models import (
    FieldDescriptor,
    FieldType,
    FlattenedRowSet,
    FormSchema,
    LineItemGroupSchema,
    Record,
    SubGroupSchema,
)
from .flattener import flatten_line_items
from .formatting import (
    add_placeholder_variants,
    add_wrapped_variants,
    format_sum,
    format_template_value,
    slugify_placeholder,
    to_decimal,
)
from .lookup import LookupSource, lookup_details

META_LABELS = {
    "RECORD_ID": "Record ID",
    "FORM_KEY": "Form",
    "CREATED_AT": "Created At",
    "UPDATED_AT": "Updated At",
    "STATUS": "Status",
    "PDF_URL": "PDF URL",
    "LANGUAGE": "Language",
}

NONE_TEXT = "None"


@dataclass
class GroupPath:
    """A group or subgroup reachable by dotted path."""

    path: str
    group_id: str
    sub_path: list[str]
    schema: LineItemGroupSchema

    @property
    def slug_path(self) -> str:
        """Group id plus the slugged subgroup path ("G.SUB_SUBSUB")."""
        if not self.sub_path:
            return self.path
        return f"{self.group_id}.{slugify_placeholder('.'.join(self.sub_path))}"


def iter_group_paths(schema: FormSchema) -> Iterator[GroupPath]:
    def walk(group_id: str, prefix: list[str], group: LineItemGroupSchema) -> Iterator[GroupPath]:
        for sub in group.sub_groups:
            if not sub.id:
                continue
            sub_path = [*prefix, sub.id]
            yield GroupPath(
                path=".".join([group_id, *sub_path]),
                group_id=group_id,
                sub_path=sub_path,
                schema=sub,
            )
            yield from walk(group_id, sub_path, sub)

    for descriptor in schema.group_fields():
        group = descriptor.group or LineItemGroupSchema()
        yield GroupPath(path=descriptor.id, group_id=descriptor.id, sub_path=[], schema=group)
        yield from walk(descriptor.id, [], group)


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _field_keys(prefix: str, descriptor: FieldDescriptor, siblings: list[FieldDescriptor]) -> list[str]:
    keys = [f"{prefix}.{descriptor.id}"]
    slug = slugify_placeholder(descriptor.label_en)
    if slug and slug not in {f.id.upper() for f in siblings}:
        keys.append(f"{prefix}.{slug}")
    return keys


# =============================================================================
# BUILD
# =============================================================================


def build_placeholders(
    record: Record,
    schema: FormSchema,
    rows: FlattenedRowSet | None = None,
    lookup: LookupSource | None = None,
) -> dict[str, str]:
    rows = rows if rows is not None else flatten_line_items(record, schema)
    mapping: dict[str, str] = {}

    meta = {
        "RECORD_ID": record.id,
        "FORM_KEY": record.form_key or schema.form_key,
        "CREATED_AT": record.created_at,
        "UPDATED_AT": record.updated_at,
        "STATUS": record.status,
        "PDF_URL": record.pdf_url,
        "LANGUAGE": record.language,
    }
    for key, value in meta.items():
        add_placeholder_variants(mapping, key, "" if value is None else str(value), preformatted=True)

    field_ids = {f.id.upper() for f in schema.data_fields()}
    for descriptor in schema.data_fields():
        value = record.values.get(descriptor.id, "")
        add_placeholder_variants(mapping, descriptor.id, value, descriptor.type)
        slug = slugify_placeholder(descriptor.label_en)
        # A slug never shadows a real field id.
        if slug and slug not in field_ids:
            add_placeholder_variants(mapping, slug, value, descriptor.type)
        if descriptor.type != FieldType.LINE_ITEM_GROUP and descriptor.lookup and _present(value):
            details = lookup_details(lookup, descriptor.lookup.source, descriptor.lookup.key_column, value)
            for column, text in details.items():
                add_placeholder_variants(mapping, f"{descriptor.id}.{column}", text, preformatted=True)

    for group in iter_group_paths(schema):
        _add_group_field_tokens(mapping, group, rows, lookup)

    # Raw values the schema did not cover (e.g. header/id drift).
    for key, raw in record.values.items():
        text = format_template_value(raw)
        for variant in (key, key.upper(), key.lower()):
            token = f"{{{{{variant}}}}}"
            if not mapping.get(token):
                mapping[token] = text

    add_label_placeholders(mapping, schema, record.language)
    add_aggregate_placeholders(mapping, schema, rows)
    return mapping


def _add_group_field_tokens(
    mapping: dict[str, str],
    group: GroupPath,
    rows: FlattenedRowSet,
    lookup: LookupSource | None,
) -> None:
    path_rows = rows.get(group.path)
    prefixes = list(dict.fromkeys([group.path, group.slug_path]))
    for descriptor in group.schema.fields:
        values = [
            format_template_value(row.values.get(descriptor.id), descriptor.type)
            for row in path_rows
            if _present(row.values.get(descriptor.id))
        ]
        values = [v for v in values if v != ""]
        if values:
            joined = "\n".join(values)
            for prefix in prefixes:
                for key in _field_keys(prefix, descriptor, group.schema.fields):
                    add_placeholder_variants(mapping, key, joined, preformatted=True)

        if descriptor.lookup is None:
            continue
        buckets: dict[str, list[str]] = {}
        for row in path_rows:
            raw = row.values.get(descriptor.id)
            if not _present(raw):
                continue
            details = lookup_details(lookup, descriptor.lookup.source, descriptor.lookup.key_column, raw)
            for column, text in details.items():
                buckets.setdefault(column, []).append(text)
        for column, texts in buckets.items():
            joined = "\n".join(t for t in texts if t)
            if not joined:
                continue
            for prefix in prefixes:
                for key in _field_keys(prefix, descriptor, group.schema.fields):
                    add_placeholder_variants(mapping, f"{key}.{column}", joined, preformatted=True)


# =============================================================================
# LABELS
# =============================================================================


def add_label_placeholders(mapping: dict[str, str], schema: FormSchema, language: str | None) -> None:
    """LABEL(path) tokens in the record language, falling back EN -> FR -> NL -> id."""
    for key, label in META_LABELS.items():
        add_wrapped_variants(mapping, "LABEL", key, label)
    for descriptor in schema.data_fields():
        add_wrapped_variants(mapping, "LABEL", descriptor.id, descriptor.label(language))
    for group in iter_group_paths(schema):
        if isinstance(group.schema, SubGroupSchema):
            add_wrapped_variants(mapping, "LABEL", group.path, group.schema.label(language))
        for descriptor in group.schema.fields:
            add_wrapped_variants(mapping, "LABEL", f"{group.path}.{descriptor.id}", descriptor.label(language))


# =============================================================================
# AGGREGATES
# =============================================================================


def consolidate(values: list[Any], field_type: str | None = None) -> str:
    """Distinct formatted values in first-seen order, or "None"."""
    seen: dict[str, None] = {}
    for value in values:
        if not _present(value):
            continue
        text = format_template_value(value, field_type).strip()
        if text:
            seen.setdefault(text, None)
    return ", ".join(seen) if seen else NONE_TEXT


def sum_values(values: list[Any]) -> str:
    total: Decimal | None = None
    for value in values:
        number = to_decimal(value)
        if number is None:
            continue
        total = number if total is None else total + number
    return format_sum(total)


def add_aggregate_placeholders(mapping: dict[str, str], schema: FormSchema, rows: FlattenedRowSet) -> None:
    """
    COUNT/CONSOLIDATED/SUM tokens for every group path.

    Aggregations read every flattened row of the record; they are not bound
    by the list scan limit.
    """
    for group in iter_group_paths(schema):
        path_rows = rows.get(group.path)
        prefixes = list(dict.fromkeys([group.path, group.slug_path]))
        for prefix in prefixes:
            add_wrapped_variants(mapping, "COUNT", prefix, str(len(path_rows)))
        for descriptor in group.schema.fields:
            column = [row.values.get(descriptor.id) for row in path_rows]
            consolidated = consolidate(column, descriptor.type)
            summed = sum_values(column) if descriptor.type == FieldType.NUMBER else None
            for prefix in prefixes:
                for key in _field_keys(prefix, descriptor, group.schema.fields):
                    add_wrapped_variants(mapping, "CONSOLIDATED", key, consolidated)
                    if summed is not None:
                        add_wrapped_variants(mapping, "SUM", key, summed)
