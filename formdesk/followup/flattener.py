"""
Expand nested repeating groups into path-addressed row sequences.

For a group field G with subgroup S (itself holding T):
    "G"      -> one FlatRow per entry of record.values[G]
    "G.S"    -> every S entry of every G row, parent=("G", i)
    "G.S.T"  -> every T entry of every G.S row, parent=("G.S", j)

Every declared path gets an entry, even when empty, so aggregations over a
path with no rows still resolve (COUNT 0, CONSOLIDATED "None").
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..models import (
    FieldType,
    FlatRow,
    FlattenedRowSet,
    FormSchema,
    LineItemGroupSchema,
    Record,
    ValueKind,
    classify_value,
)

logger = logging.getLogger(__name__)


def parse_group_rows(raw: Any) -> list[dict[str, Any]]:
    """Group value as a list of row mappings. JSON text is decoded; non-mapping entries become empty rows."""
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        try:
            raw = json.loads(text)
        except ValueError:
            logger.debug("Group value is not JSON; treating as empty")
            return []
    if isinstance(raw, dict):
        raw = [raw]
    if classify_value(raw) == ValueKind.SCALAR:
        return []
    return [row if isinstance(row, dict) else {} for row in raw]


def _flatten_children(
    result: FlattenedRowSet,
    parent_path: str,
    parent_rows: list[FlatRow],
    group: LineItemGroupSchema,
) -> None:
    for sub in group.sub_groups:
        if not sub.id:
            logger.debug(f"Skipping subgroup without id under {parent_path}")
            continue
        path = f"{parent_path}.{sub.id}"
        rows: list[FlatRow] = []
        for parent in parent_rows:
            for child in parse_group_rows(parent.values.get(sub.id)):
                rows.append(
                    FlatRow(path=path, index=len(rows), values=child, parent=(parent_path, parent.index))
                )
        result.add(path, rows)
        _flatten_children(result, path, rows, sub)


def flatten_line_items(record: Record, schema: FormSchema) -> FlattenedRowSet:
    result = FlattenedRowSet()
    for descriptor in schema.fields:
        if descriptor.type != FieldType.LINE_ITEM_GROUP:
            continue
        top = [
            FlatRow(path=descriptor.id, index=i, values=row)
            for i, row in enumerate(parse_group_rows(record.values.get(descriptor.id)))
        ]
        result.add(descriptor.id, top)
        if descriptor.group is not None:
            _flatten_children(result, descriptor.id, top, descriptor.group)
    return result
