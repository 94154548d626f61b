"""
Template and recipient selection for follow-up actions.

- resolve_template_id: plain id, language map, or field-driven cases
- resolve_recipients: literal addresses (placeholders expanded) and
  lookup entries resolved through a LookupSource, with fallback
- resolve_status_value: localized status transition values
"""

from __future__ import annotations

import logging
from typing import Any

from ..models import (
    LocalizedText,
    Record,
    RecipientEntry,
    RecipientLookup,
    StatusTransitions,
    TemplateRef,
    TemplateSelector,
)
from ..observability import debug_log
from .formatting import apply_placeholders
from .lookup import LookupSource, lookup_value

logger = logging.getLogger(__name__)

DEFAULT_ON_CLOSE = "Closed"


def resolve_localized(value: LocalizedText | None, language: str | None = None) -> str:
    """Text for the language, then English, then empty."""
    if not value:
        return ""
    if isinstance(value, str):
        return value
    lang = (language or "EN").strip()
    for key in (lang.lower(), lang.upper(), "en", "EN"):
        text = value.get(key)
        if text:
            return str(text)
    return ""


def _matches(value: Any, expected: list[str]) -> bool:
    wanted = {str(e).strip().lower() for e in expected}
    candidates = value if isinstance(value, (list, tuple)) else [value]
    return any(c is not None and str(c).strip().lower() in wanted for c in candidates)


def _select(ref: TemplateRef | None, record: Record) -> str | dict[str, str] | None:
    if ref is None:
        return None
    if isinstance(ref, str):
        return ref.strip() or None
    if isinstance(ref, TemplateSelector):
        for case in ref.cases:
            if not case.field_id:
                continue
            value = record.values.get(case.field_id)
            if _matches(value, case.equals):
                debug_log(
                    "followup.template.caseMatched",
                    field_id=case.field_id,
                    value="" if value is None else str(value),
                    language=record.language,
                )
                return _select(case.template, record)
        return _select(ref.default, record) if ref.default is not None else None
    return ref


def resolve_template_id(ref: TemplateRef | None, record: Record) -> str | None:
    """
    Template id for a record.

    Language maps are read by the record language (either case), then EN,
    then their first entry.
    """
    base = _select(ref, record)
    if not base:
        return None
    if isinstance(base, str):
        return base.strip() or None
    language = record.language or "EN"
    for key in (language.upper(), language.lower(), "EN"):
        if base.get(key):
            return str(base[key]).strip() or None
    first = next(iter(base.values()), None)
    return str(first).strip() if first else None


def resolve_status_value(
    transitions: StatusTransitions | None,
    key: str,
    language: str | None = None,
    include_default_on_close: bool = False,
) -> str:
    """Status written by a transition ("on_pdf", "on_email", "on_close")."""
    raw = getattr(transitions, key, None) if transitions is not None else None
    if isinstance(raw, str):
        return raw.strip()
    if not raw:
        return DEFAULT_ON_CLOSE if include_default_on_close and key == "on_close" else ""
    lang = (language or "EN").strip()
    for lang_key in (lang.upper(), lang.lower(), "en", "EN"):
        if raw.get(lang_key) is not None:
            return str(raw[lang_key]).strip()
    fallback = next((str(v).strip() for v in raw.values() if v and str(v).strip()), "")
    if fallback:
        return fallback
    return DEFAULT_ON_CLOSE if include_default_on_close and key == "on_close" else ""


def _lookup_recipient(lookup: LookupSource | None, entry: RecipientLookup, record: Record) -> str | None:
    value = record.values.get(entry.record_field)
    if not value:
        return None
    return lookup_value(lookup, entry.source, entry.lookup_column, value, entry.value_column)


def resolve_recipients(
    entries: list[RecipientEntry] | None,
    placeholders: dict[str, str],
    record: Record,
    lookup: LookupSource | None = None,
) -> list[str]:
    if not entries:
        return []
    resolved: list[str] = []
    for entry in entries:
        if isinstance(entry, str):
            address = apply_placeholders(entry, placeholders).strip()
            if address:
                resolved.append(address)
            continue
        if isinstance(entry, RecipientLookup):
            address = _lookup_recipient(lookup, entry, record)
            if address:
                resolved.append(address)
            elif entry.fallback:
                debug_log("followup.recipient.fallback", source=entry.source, record_id=record.id)
                resolved.append(entry.fallback)
    return [r for r in resolved if r]
