"""
Submission store: records over a backing table.

One table per form, row 1 headers, one row per record. The table is
authoritative; list pages and records are cached under keys derived from the
table fingerprint, so any write that changes the extent or the id/updated-at
columns moves every reader onto fresh keys.

Writes are read-then-write by record id (last write wins). Dedup rules are
evaluated against every other row before anything is written.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from ..cache import StoreCache
from ..cache.store_cache import digest
from ..config import Settings
from ..dedup import DedupConflict, ExistingRecord, find_conflict
from ..models import DedupRule, FieldType, FormSchema, Record, normalize_language
from ..properties import PropertyStore, next_counter
from ..table import TableAccessor, Workbook
from .headers import HeaderColumns, ensure_destination
from .pagination import ListPage, clamp_page_size, decode_page_token, encode_page_token

logger = logging.getLogger(__name__)

AUTO_INCREMENT_PROPERTY_PREFIX = "FD_AUTO_"
MAX_PAD_LENGTH = 20


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_iso(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class UpsertResult:
    success: bool
    message: str
    record_id: str
    created_at: str | None = None
    updated_at: str | None = None
    record: Record | None = None
    conflict: DedupConflict | None = None

    @staticmethod
    def ok(record: Record) -> UpsertResult:
        return UpsertResult(
            success=True,
            message="Saved",
            record_id=record.id,
            created_at=record.created_at,
            updated_at=record.updated_at,
            record=record,
        )

    @staticmethod
    def rejected(record_id: str, conflict: DedupConflict, created_at: str | None = None) -> UpsertResult:
        return UpsertResult(
            success=False,
            message=conflict.message,
            record_id=record_id,
            created_at=created_at,
            conflict=conflict,
        )


@dataclass
class RecordContext:
    """A located record row, used by follow-up actions to write back."""

    table: TableAccessor
    headers: list[str]
    columns: HeaderColumns
    row_index: int
    row_values: list[Any]
    record: Record
    schema: FormSchema | None = field(default=None, repr=False)


# =============================================================================
# STORE
# =============================================================================


class SubmissionStore:
    def __init__(
        self,
        workbook: Workbook,
        cache: StoreCache,
        properties: PropertyStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.workbook = workbook
        self.cache = cache
        self.properties = properties
        self.settings = settings or Settings()
        self.clock = clock or utc_now

    # ------------------------------------------------------------------
    # Table helpers
    # ------------------------------------------------------------------

    def _destination(self, schema: FormSchema) -> tuple[TableAccessor, list[str], HeaderColumns]:
        table = self.workbook.table(schema.table_name)
        headers, columns = ensure_destination(table, schema)
        return table, headers, columns

    def _fingerprint(self, table: TableAccessor, columns: HeaderColumns) -> str:
        return self.cache.fingerprint(
            table,
            record_id_col=columns.record_id,
            updated_at_col=columns.updated_at,
            created_at_col=columns.created_at,
            timestamp_col=columns.timestamp,
        )

    def _data_row_count(self, table: TableAccessor) -> int:
        return max(0, table.last_row() - 1)

    def _find_row_index(self, table: TableAccessor, columns: HeaderColumns, record_id: str) -> int | None:
        """1-based table row holding record_id, by linear scan of the id column."""
        if not columns.record_id or not record_id:
            return None
        count = self._data_row_count(table)
        if count <= 0:
            return None
        ids = table.get_range(2, columns.record_id, count, 1)
        for offset, row in enumerate(ids):
            if str(row[0] or "") == record_id:
                return 2 + offset
        return None

    def build_record(
        self,
        schema: FormSchema,
        columns: HeaderColumns,
        row: list[Any],
        fallback_id: str | None = None,
    ) -> Record | None:
        """Record from one table row; None when the row carries no id."""

        def cell(col: int | None) -> Any:
            if not col or col > len(row):
                return None
            return row[col - 1]

        record_id = fallback_id or str(cell(columns.record_id) or "")
        if not record_id:
            return None

        values: dict[str, Any] = {}
        for descriptor in schema.data_fields():
            col = columns.fields.get(descriptor.id)
            if not col:
                continue
            value = cell(col)
            if descriptor.type == FieldType.LINE_ITEM_GROUP and isinstance(value, str) and value.strip():
                try:
                    value = json.loads(value)
                except ValueError:
                    pass
            values[descriptor.id] = "" if value is None else value

        status = cell(columns.status)
        pdf_url = cell(columns.pdf_url)
        return Record(
            id=record_id,
            form_key=schema.form_key,
            language=normalize_language(cell(columns.language)),
            values=values,
            created_at=as_iso(cell(columns.created_at)),
            updated_at=as_iso(cell(columns.updated_at)),
            status=str(status) if status else None,
            pdf_url=str(pdf_url) if pdf_url else None,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_page(
        self,
        schema: FormSchema,
        projection: list[str] | None = None,
        page_size: int | None = 10,
        page_token: str | None = None,
    ) -> ListPage:
        """
        One page of projected rows in table order.

        Counts at most max_scan_rows data rows. The next token is only issued
        while rows remain below that bound.
        """
        table, headers, columns = self._destination(schema)
        fingerprint = self._fingerprint(table, columns)
        capped_total = min(self._data_row_count(table), self.settings.max_scan_rows)
        size = clamp_page_size(page_size, self.settings.max_page_size)
        offset = decode_page_token(page_token)
        if offset >= capped_total:
            return ListPage(items=[], total_count=capped_total)

        field_ids = list(projection) if projection else [f.id for f in schema.data_fields()]

        cache_key = None
        if fingerprint:
            cache_key = self.cache.list_key(schema.form_key, fingerprint, field_ids, size, page_token)
            cached = self.cache.get_json(cache_key)
            if cached:
                return ListPage(**cached)

        read_count = min(size, capped_total - offset)
        rows = table.get_range(2 + offset, 1, read_count, len(headers)) if read_count > 0 else []
        items = []
        for row in rows:
            record = self.build_record(schema, columns, row)
            item: dict[str, Any] = {
                "id": record.id if record else "",
                "created_at": record.created_at if record else None,
                "updated_at": record.updated_at if record else None,
                "status": record.status if record else None,
                "pdf_url": record.pdf_url if record else None,
            }
            for fid in field_ids:
                if fid in columns.fields and record is not None:
                    item[fid] = record.values.get(fid)
            items.append(item)
            if record is not None:
                self.cache.cache_record(schema.form_key, fingerprint, record.to_dict())

        next_offset = offset + read_count
        page = ListPage(
            items=items,
            next_page_token=encode_page_token(next_offset) if next_offset < capped_total else None,
            total_count=capped_total,
        )
        if cache_key:
            self.cache.put_json(cache_key, page.model_dump())
        return page

    def get_by_id(self, schema: FormSchema, record_id: str) -> Record | None:
        if not record_id:
            return None
        table, headers, columns = self._destination(schema)
        fingerprint = self._fingerprint(table, columns)
        cached = self.cache.cached_record(schema.form_key, fingerprint, record_id)
        if cached:
            return Record.from_dict(cached)

        row_index = self._find_row_index(table, columns, record_id)
        if row_index is None:
            return None
        row = table.get_range(row_index, 1, 1, len(headers))[0]
        record = self.build_record(schema, columns, row, record_id)
        if record is not None:
            self.cache.cache_record(schema.form_key, fingerprint, record.to_dict())
        return record

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(
        self,
        schema: FormSchema,
        record: Record,
        dedup_rules: list[DedupRule] | None = None,
    ) -> UpsertResult:
        """
        Create or update a record.

        Nothing is written when a dedup rule rejects the candidate. On update
        the creation timestamp and any columns outside the write set (status,
        document URL, foreign columns) are kept.
        """
        table, headers, columns = self._destination(schema)
        now = self.clock()
        now_iso = now.isoformat()
        language = normalize_language(record.language)
        record_id = str(record.id or "").strip() or str(uuid.uuid4())
        values = dict(record.values)

        row_index = self._find_row_index(table, columns, record_id)
        if row_index is not None:
            row = list(table.get_range(row_index, 1, 1, len(headers))[0])
        else:
            row = [""] * len(headers)

        def set_cell(col: int | None, value: Any) -> None:
            if col:
                row[col - 1] = "" if value is None else value

        created_at = now_iso
        if row_index is not None and columns.created_at:
            created_at = as_iso(row[columns.created_at - 1]) or now_iso

        self._apply_auto_increment(schema, values)

        candidate_values: dict[str, Any] = {}
        for descriptor in schema.data_fields():
            col = columns.fields.get(descriptor.id)
            if not col:
                continue
            stored = self._serialize_value(descriptor.type, values.get(descriptor.id))
            candidate_values[descriptor.id] = stored
            set_cell(col, stored)

        set_cell(columns.timestamp, now_iso)
        set_cell(columns.language, language)
        set_cell(columns.record_id, record_id)
        set_cell(columns.created_at, created_at)
        set_cell(columns.updated_at, now_iso)
        if record.status is not None:
            set_cell(columns.status, record.status)
        if record.pdf_url is not None:
            set_cell(columns.pdf_url, record.pdf_url)

        if dedup_rules:
            conflict = find_conflict(
                dedup_rules,
                ExistingRecord(id=record_id, values=candidate_values),
                self._existing_records(table, headers, columns),
                language,
            )
            if conflict:
                logger.info(
                    f"Rejected {schema.form_key} record {record_id}: rule {conflict.rule_id} "
                    f"matches {conflict.existing_record_id}"
                )
                return UpsertResult.rejected(record_id, conflict, created_at)

        if row_index is not None:
            table.set_range(row_index, 1, [row])
        else:
            table.append_row(row)
        logger.info(f"{'Updated' if row_index else 'Created'} {schema.form_key} record {record_id}")

        stored = self.build_record(schema, columns, row, record_id)
        fingerprint = self._fingerprint(table, columns)
        self.cache.cache_record(schema.form_key, fingerprint, stored.to_dict())
        return UpsertResult.ok(stored)

    def _existing_records(
        self, table: TableAccessor, headers: list[str], columns: HeaderColumns
    ) -> list[ExistingRecord]:
        count = self._data_row_count(table)
        if count <= 0:
            return []
        existing = []
        for offset, row in enumerate(table.get_range(2, 1, count, len(headers))):
            vals = {fid: row[col - 1] for fid, col in columns.fields.items() if col <= len(row)}
            rid = str(row[columns.record_id - 1] or "") if columns.record_id else ""
            existing.append(ExistingRecord(id=rid or None, values=vals, row_number=2 + offset))
        return existing

    @staticmethod
    def _serialize_value(field_type: FieldType, value: Any) -> Any:
        if value is None:
            return ""
        if field_type == FieldType.LINE_ITEM_GROUP:
            if isinstance(value, str):
                return value
            return json.dumps(value, ensure_ascii=False) if value else ""
        if field_type == FieldType.FILE and isinstance(value, (list, tuple)):
            urls = [v.get("url", "") if isinstance(v, dict) else str(v) for v in value]
            return ", ".join(u for u in urls if u)
        if isinstance(value, (list, tuple)):
            return ", ".join(str(v) for v in value)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return value

    def _apply_auto_increment(self, schema: FormSchema, values: dict[str, Any]) -> None:
        for descriptor in schema.data_fields():
            if descriptor.type != FieldType.TEXT or descriptor.auto_increment is None:
                continue
            if values.get(descriptor.id):
                continue
            config = descriptor.auto_increment
            key = AUTO_INCREMENT_PROPERTY_PREFIX + digest(f"{schema.form_key}::{descriptor.id}")
            number = next_counter(self.properties, key)
            pad = max(1, min(MAX_PAD_LENGTH, config.pad_length or 6))
            values[descriptor.id] = f"{config.prefix or ''}{str(number).zfill(pad)}"

    # ------------------------------------------------------------------
    # Follow-up support
    # ------------------------------------------------------------------

    def get_record_context(self, schema: FormSchema, record_id: str) -> RecordContext | None:
        table, headers, columns = self._destination(schema)
        row_index = self._find_row_index(table, columns, record_id)
        if row_index is None:
            return None
        row = table.get_range(row_index, 1, 1, len(headers))[0]
        record = self.build_record(schema, columns, row, record_id)
        return RecordContext(
            table=table,
            headers=headers,
            columns=columns,
            row_index=row_index,
            row_values=row,
            record=record,
            schema=schema,
        )

    def touch_updated_at(self, context: RecordContext) -> str | None:
        if not context.columns.updated_at:
            return None
        stamp = self.clock().isoformat()
        context.table.set_range(context.row_index, context.columns.updated_at, [[stamp]])
        context.record.updated_at = stamp
        return stamp

    def write_status(
        self,
        context: RecordContext,
        value: str | None,
        status_field_id: str | None = None,
    ) -> str | None:
        """Write a status value and touch updated-at. Returns the new timestamp."""
        if not value:
            return None
        if status_field_id and status_field_id in context.columns.fields:
            col = context.columns.fields[status_field_id]
            context.record.values[status_field_id] = value
        elif context.columns.status:
            col = context.columns.status
            context.record.status = value
        else:
            return None
        context.table.set_range(context.row_index, col, [[value]])
        return self.touch_updated_at(context)

    def write_document_url(self, context: RecordContext, url: str) -> None:
        if not context.columns.pdf_url:
            return
        context.table.set_range(context.row_index, context.columns.pdf_url, [[url]])
        context.record.pdf_url = url or None
        # PDF column is outside the fingerprint.
        self.refresh_record_cache(context)

    def refresh_record_cache(self, context: RecordContext) -> None:
        """Re-read the row and cache it under the current fingerprint."""
        if context.schema is None:
            return
        row = context.table.get_range(context.row_index, 1, 1, len(context.headers))[0]
        record = self.build_record(context.schema, context.columns, row, context.record.id)
        if record is None:
            return
        context.row_values = row
        context.record = record
        fingerprint = self._fingerprint(context.table, context.columns)
        self.cache.cache_record(context.schema.form_key, fingerprint, record.to_dict())

    def invalidate_cache(self, reason: str = "manual") -> str:
        return self.cache.invalidate(reason)
