"""
Version-prefixed cache for list pages and records.

Key layout:
    <prefix>:<store version>:<NAMESPACE>:<md5 of parts joined by "::">

The version lives in the property store. invalidate() writes a fresh one, so
every earlier key becomes unreachable and simply ages out of the backend.

The fingerprint folds the table extent and the record-id/updated-at columns
into one digest: any append, in-place update or out-of-band edit of those
columns yields new keys, so stale entries are never read.

Every operation here is best-effort. Backend failures are reported through
debug_log and degrade to a miss/no-op.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from typing import Any

from ..config import Settings
from ..observability import debug_log
from ..properties import PropertyStore
from ..table import TableAccessor
from .backend import CacheBackend

logger = logging.getLogger(__name__)

VERSION_PROPERTY = "FD_CACHE_VERSION"
MAX_KEY_LENGTH = 250

LIST_NAMESPACE = "LIST"
RECORD_NAMESPACE = "RECORD"


def digest(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()  # noqa: S324


class StoreCache:
    def __init__(
        self,
        backend: CacheBackend | None,
        properties: PropertyStore,
        settings: Settings | None = None,
    ):
        self.backend = backend
        self.properties = properties
        self.settings = settings or Settings()

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    # ------------------------------------------------------------------
    # Versioning
    # ------------------------------------------------------------------

    def version(self) -> str:
        try:
            current = self.properties.get(VERSION_PROPERTY)
            if current:
                return current
            current = uuid.uuid4().hex[:12]
            self.properties.set(VERSION_PROPERTY, current)
            return current
        except (OSError, ValueError) as e:
            debug_log("cache.version_failed", error=str(e))
            return "0"

    def prefix(self) -> str:
        return f"{self.settings.cache_prefix}:{self.version()}"

    def invalidate(self, reason: str = "manual") -> str:
        """Orphan every existing entry by writing a fresh store version."""
        new_version = uuid.uuid4().hex[:12]
        try:
            self.properties.set(VERSION_PROPERTY, new_version)
        except (OSError, ValueError) as e:
            debug_log("cache.invalidate_failed", reason=reason, error=str(e))
            return self.version()
        logger.info(f"Cache invalidated ({reason}); new version {new_version}")
        return new_version

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def make_key(self, namespace: str, parts: list[Any]) -> str:
        joined = "::".join("" if p is None else str(p) for p in parts)
        key = f"{self.prefix()}:{namespace.upper()}:{digest(joined)}"
        return key[:MAX_KEY_LENGTH]

    def list_key(
        self,
        form_key: str,
        fingerprint: str,
        projection: list[str],
        page_size: int,
        page_token: str | None,
    ) -> str:
        return self.make_key(
            LIST_NAMESPACE,
            [form_key, fingerprint, ",".join(projection), page_size, page_token or ""],
        )

    def record_key(self, form_key: str, fingerprint: str, record_id: str) -> str:
        return self.make_key(RECORD_NAMESPACE, [form_key, fingerprint, record_id])

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def get_json(self, key: str) -> Any | None:
        if self.backend is None:
            return None
        try:
            raw = self.backend.get(key)
        except Exception as e:
            debug_log("cache.get_failed", key=key, error=str(e))
            return None
        if raw is None:
            debug_log("cache.miss", key=key)
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            debug_log("cache.decode_failed", key=key, error=str(e))
            return None

    def put_json(self, key: str, value: Any) -> None:
        if self.backend is None:
            return
        try:
            payload = json.dumps(value, default=str)
            self.backend.put(key, payload, self.settings.cache_ttl_seconds)
        except Exception as e:
            debug_log("cache.put_failed", key=key, error=str(e))

    def cache_record(self, form_key: str, fingerprint: str, record: dict) -> None:
        if not fingerprint or not record.get("id"):
            return
        self.put_json(self.record_key(form_key, fingerprint, record["id"]), record)

    def cached_record(self, form_key: str, fingerprint: str, record_id: str) -> dict | None:
        if not fingerprint:
            return None
        return self.get_json(self.record_key(form_key, fingerprint, record_id))

    # ------------------------------------------------------------------
    # Fingerprint
    # ------------------------------------------------------------------

    def fingerprint(
        self,
        table: TableAccessor,
        *,
        record_id_col: int | None,
        updated_at_col: int | None,
        created_at_col: int | None = None,
        timestamp_col: int | None = None,
    ) -> str:
        """
        Digest of the table's extent and change-tracking columns.

        Returns "" when caching is disabled or the table cannot be read; callers
        treat an empty fingerprint as "do not cache".
        """
        if self.backend is None:
            return ""
        try:
            last_row = table.last_row()
            last_col = table.last_column()
            marker = ""
            if last_row >= 2 and last_col >= 1:
                tail = table.get_range(last_row, 1, 1, last_col)[0]
                marker = "|".join(
                    _cell(tail, col)
                    for col in (updated_at_col, created_at_col, record_id_col, timestamp_col)
                )
            parts = [
                table.table_id,
                str(last_row),
                str(last_col),
                marker,
                _column_digest(table, updated_at_col, last_row),
                _column_digest(table, record_id_col, last_row),
            ]
            return digest("::".join(parts))
        except Exception as e:
            debug_log("cache.fingerprint_failed", table=getattr(table, "table_id", ""), error=str(e))
            return ""


def _cell(row: list[Any], col: int | None) -> str:
    if not col or col > len(row):
        return ""
    value = row[col - 1]
    return "" if value is None else str(value)


def _column_digest(table: TableAccessor, col: int | None, last_row: int) -> str:
    if not col or last_row < 2:
        return ""
    values = table.get_range(2, col, last_row - 1, 1)
    return digest("\n".join("" if r[0] is None else str(r[0]) for r in values))
