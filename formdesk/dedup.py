"""
Duplicate-submission rules.

A rule names an ordered list of key fields. A candidate conflicts with an
existing record when every key part is present on both sides and the
normalized composite keys are equal. Rules are checked in declared order and
the first equal key decides: `ignore` stops checking with no conflict,
`reject` (and `merge`, which has no merge behavior) reports the rule message.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from .models import ConflictPolicy, DedupRule, MatchMode

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Duplicate record."
KEY_SEPARATOR = "||"
LIST_SEPARATOR = "|"


@dataclass
class ExistingRecord:
    id: str | None = None
    values: dict[str, Any] = field(default_factory=dict)
    row_number: int | None = None


@dataclass
class DedupConflict:
    rule_id: str
    message: str
    existing_record_id: str | None = None
    existing_row_number: int | None = None


# =============================================================================
# LOADING
# =============================================================================


def parse_localized(raw: Any) -> str | dict[str, str] | None:
    """Plain text, a language mapping, or JSON text holding a mapping."""
    if raw is None:
        return None
    if isinstance(raw, dict):
        return raw
    text = str(raw).strip()
    if not text:
        return None
    if text.startswith("{") and text.endswith("}"):
        try:
            parsed = json.loads(text)
        except ValueError:
            return text
        if isinstance(parsed, dict):
            return parsed
    return text


def _cell(row: list[Any] | dict, index: int, name: str) -> Any:
    if isinstance(row, dict):
        return row.get(name)
    return row[index] if index < len(row) else None


def load_dedup_rules(rows: Iterable[list[Any] | dict]) -> list[DedupRule]:
    """
    Parse configuration rows into rules.

    Each row is either positional (id, scope, keys, match mode, policy,
    message) or a mapping with those names. Blank ids are skipped; an
    unknown match mode reads as exact and an unknown policy as reject.
    """
    rules = []
    for row in rows:
        rule_id = str(_cell(row, 0, "id") or "").strip()
        if not rule_id:
            continue
        scope = str(_cell(row, 1, "scope") or "form").strip() or "form"
        raw_keys = _cell(row, 2, "keys") or ""
        if isinstance(raw_keys, (list, tuple)):
            keys = [str(k).strip() for k in raw_keys if str(k).strip()]
        else:
            keys = [k.strip() for k in str(raw_keys).split(",") if k.strip()]
        mode_raw = str(_cell(row, 3, "match_mode") or "exact").strip().lower()
        match_mode = MatchMode.CASE_INSENSITIVE if mode_raw == "caseinsensitive" else MatchMode.EXACT
        policy_raw = str(_cell(row, 4, "on_conflict") or "reject").strip().lower()
        try:
            policy = ConflictPolicy(policy_raw)
        except ValueError:
            policy = ConflictPolicy.REJECT
        rules.append(
            DedupRule(
                id=rule_id,
                scope=scope,
                keys=keys,
                match_mode=match_mode,
                on_conflict=policy,
                message=parse_localized(_cell(row, 5, "message")),
            )
        )
    return rules


# =============================================================================
# NORMALIZATION
# =============================================================================


def _normalize_scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def normalize_key_value(value: Any, mode: MatchMode = MatchMode.EXACT) -> str:
    if isinstance(value, (list, tuple)):
        base = LIST_SEPARATOR.join(_normalize_scalar(v) for v in value)
    else:
        base = _normalize_scalar(value)
    return base.lower() if mode == MatchMode.CASE_INSENSITIVE else base


def compute_signature(rule: DedupRule, values: dict[str, Any]) -> str | None:
    """Joined normalized key, or None while any key part is empty."""
    if not rule.keys:
        return None
    parts = [normalize_key_value((values or {}).get(k), rule.match_mode) for k in rule.keys]
    if any(not p.strip() for p in parts):
        return None
    return KEY_SEPARATOR.join(parts)


def resolve_message(message: str | dict[str, str] | None, language: str | None = None) -> str:
    normalized = parse_localized(message)
    if not normalized:
        return DEFAULT_MESSAGE
    if isinstance(normalized, str):
        return normalized
    lang = (language or "en").lower()
    lowered = {str(k).lower(): v for k, v in normalized.items()}
    return lowered.get(lang) or lowered.get("en") or DEFAULT_MESSAGE


# =============================================================================
# EVALUATION
# =============================================================================


def find_conflict(
    rules: list[DedupRule] | None,
    candidate: ExistingRecord,
    existing: Iterable[ExistingRecord],
    language: str | None = None,
) -> DedupConflict | None:
    if not rules:
        return None
    existing = list(existing)
    for rule in rules:
        incoming = compute_signature(rule, candidate.values)
        if incoming is None:
            continue
        for record in existing:
            if candidate.id and record.id and candidate.id == record.id:
                continue
            if compute_signature(rule, record.values) != incoming:
                continue
            if rule.on_conflict == ConflictPolicy.IGNORE:
                logger.debug(f"Dedup rule {rule.id} matched {record.id} with ignore policy")
                return None
            return DedupConflict(
                rule_id=rule.id,
                message=resolve_message(rule.message, language),
                existing_record_id=record.id,
                existing_row_number=record.row_number,
            )
    return None


def evaluate(
    rules: list[DedupRule] | None,
    candidate: ExistingRecord,
    existing: Iterable[ExistingRecord],
    language: str | None = None,
) -> str | None:
    """Conflict message for the first matching rule, or None."""
    conflict = find_conflict(rules, candidate, existing, language)
    return conflict.message if conflict else None
