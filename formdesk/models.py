"""
Data shapes shared by every FormDesk component.

Schema:
- FormSchema -> FieldDescriptor (one per question)
- LINE_ITEM_GROUP fields carry a LineItemGroupSchema, which may nest
  SubGroupSchema entries to any depth.

Records:
- Record holds the caller-visible submission (values keyed by field id).
- classify_value() tags each stored value as a scalar, a scalar list or a
  repeating group so recursion over nested rows is structural.

Flattening:
- FlattenedRowSet maps dotted paths ("GROUP", "GROUP.SUB") to FlatRow lists.
  Parents are referenced by (path, index), never by object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .errors import ConfigurationError

SUPPORTED_LANGUAGES = ("EN", "FR", "NL")
LABEL_FALLBACK_ORDER = ("EN", "FR", "NL")


def normalize_language(raw: Any) -> str:
    """Coerce a language tag to EN/FR/NL (EN when unknown)."""
    if isinstance(raw, (list, tuple)):
        raw = raw[-1] if raw else ""
    value = str(raw or "EN").strip().upper()
    return value if value in SUPPORTED_LANGUAGES else "EN"


def resolve_label(labels: dict[str, str], language: str | None, fallback: str) -> str:
    """Label in the requested language, then EN, FR, NL, then the fallback."""
    order = [normalize_language(language)] if language else []
    order.extend(LABEL_FALLBACK_ORDER)
    for lang in order:
        text = (labels.get(lang) or labels.get(lang.lower()) or "").strip()
        if text:
            return text
    return fallback


# =============================================================================
# SCHEMA
# =============================================================================


class FieldType(StrEnum):
    TEXT = "TEXT"
    PARAGRAPH = "PARAGRAPH"
    NUMBER = "NUMBER"
    DATE = "DATE"
    CHOICE = "CHOICE"
    CHECKBOX = "CHECKBOX"
    FILE = "FILE"
    LINE_ITEM_GROUP = "LINE_ITEM_GROUP"
    BUTTON = "BUTTON"


@dataclass
class LookupRef:
    """External reference source: the field value is matched against key_column."""

    source: str
    key_column: str


@dataclass
class AutoIncrement:
    prefix: str = ""
    pad_length: int = 6


@dataclass
class FieldDescriptor:
    id: str
    type: FieldType = FieldType.TEXT
    labels: dict[str, str] = field(default_factory=dict)
    lookup: LookupRef | None = None
    auto_increment: AutoIncrement | None = None
    group: LineItemGroupSchema | None = None

    def label(self, language: str | None = None) -> str:
        return resolve_label(self.labels, language, self.id)

    @property
    def label_en(self) -> str:
        return (self.labels.get("EN") or "").strip() or self.id


@dataclass
class LineItemGroupSchema:
    fields: list[FieldDescriptor] = field(default_factory=list)
    sub_groups: list[SubGroupSchema] = field(default_factory=list)

    def field(self, field_id: str) -> FieldDescriptor | None:
        target = field_id.upper()
        for f in self.fields:
            if f.id.upper() == target:
                return f
        return None

    def sub_group(self, sub_id: str) -> SubGroupSchema | None:
        target = sub_id.upper()
        for sub in self.sub_groups:
            if sub.id and sub.id.upper() == target:
                return sub
        return None


@dataclass
class SubGroupSchema(LineItemGroupSchema):
    id: str = ""
    labels: dict[str, str] = field(default_factory=dict)

    def label(self, language: str | None = None) -> str:
        return resolve_label(self.labels, language, self.id)


@dataclass
class FormSchema:
    form_key: str
    fields: list[FieldDescriptor] = field(default_factory=list)
    title: str = ""
    destination: str = ""

    def __post_init__(self):
        _check_unique([f.id for f in self.fields], f"form {self.form_key}")
        for f in self.fields:
            if f.type == FieldType.LINE_ITEM_GROUP:
                if f.group is None:
                    f.group = LineItemGroupSchema()
                _check_group(f.group, f.id)

    @property
    def table_name(self) -> str:
        return self.destination or f"{self.title or self.form_key} Responses"

    def field(self, field_id: str) -> FieldDescriptor | None:
        for f in self.fields:
            if f.id == field_id:
                return f
        return None

    def data_fields(self) -> list[FieldDescriptor]:
        """Fields that own a storage column (everything but buttons)."""
        return [f for f in self.fields if f.type != FieldType.BUTTON]

    def group_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if f.type == FieldType.LINE_ITEM_GROUP]

    def resolve_group(self, path: str) -> LineItemGroupSchema | None:
        """Group schema at a dotted path ("GROUP" or "GROUP.SUB.SUBSUB")."""
        segments = [seg.strip() for seg in path.split(".") if seg.strip()]
        if not segments:
            return None
        top = next((f for f in self.group_fields() if f.id.upper() == segments[0].upper()), None)
        if top is None or top.group is None:
            return None
        current: LineItemGroupSchema = top.group
        for seg in segments[1:]:
            sub = current.sub_group(seg)
            if sub is None:
                return None
            current = sub
        return current


def _check_unique(ids: list[str], scope: str) -> None:
    seen: set[str] = set()
    for fid in ids:
        if not fid:
            raise ConfigurationError(f"Empty field id in {scope}")
        if fid in seen:
            raise ConfigurationError(f"Duplicate field id {fid!r} in {scope}")
        seen.add(fid)


def _check_group(group: LineItemGroupSchema, path: str) -> None:
    _check_unique([f.id for f in group.fields], path)
    sub_ids = [s.id for s in group.sub_groups if s.id]
    _check_unique(sub_ids, f"{path} subgroups")
    for sub in group.sub_groups:
        if sub.id:
            _check_group(sub, f"{path}.{sub.id}")


# =============================================================================
# RECORDS
# =============================================================================


class ValueKind(StrEnum):
    SCALAR = "scalar"
    SCALAR_LIST = "scalar_list"
    REPEATING_GROUP = "repeating_group"


def classify_value(value: Any) -> ValueKind:
    if isinstance(value, (list, tuple)):
        if value and all(isinstance(item, dict) for item in value):
            return ValueKind.REPEATING_GROUP
        return ValueKind.SCALAR_LIST
    return ValueKind.SCALAR


@dataclass
class Record:
    id: str = ""
    form_key: str = ""
    language: str = "EN"
    values: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None
    status: str | None = None
    pdf_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "form_key": self.form_key,
            "language": self.language,
            "values": self.values,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "status": self.status,
            "pdf_url": self.pdf_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Record:
        return cls(
            id=str(data.get("id") or ""),
            form_key=str(data.get("form_key") or ""),
            language=normalize_language(data.get("language")),
            values=dict(data.get("values") or {}),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            status=data.get("status"),
            pdf_url=data.get("pdf_url"),
        )


# =============================================================================
# FLATTENED ROWS
# =============================================================================


@dataclass
class FlatRow:
    path: str
    index: int
    values: dict[str, Any]
    parent: tuple[str, int] | None = None


class FlattenedRowSet:
    """Path-addressed row sequences for every group and subgroup of a record."""

    def __init__(self):
        self._rows: dict[str, list[FlatRow]] = {}

    def add(self, path: str, rows: list[FlatRow]) -> None:
        self._rows[path] = rows

    def get(self, path: str) -> list[FlatRow]:
        if path in self._rows:
            return self._rows[path]
        target = path.upper()
        for key, rows in self._rows.items():
            if key.upper() == target:
                return rows
        return []

    def paths(self) -> list[str]:
        return list(self._rows.keys())

    def __contains__(self, path: str) -> bool:
        return any(key.upper() == path.upper() for key in self._rows)

    def parent_of(self, row: FlatRow) -> FlatRow | None:
        if row.parent is None:
            return None
        parent_path, parent_index = row.parent
        siblings = self._rows.get(parent_path, [])
        return siblings[parent_index] if 0 <= parent_index < len(siblings) else None

    def ancestors(self, row: FlatRow) -> list[FlatRow]:
        """Enclosing rows, nearest first."""
        chain = []
        current = self.parent_of(row)
        while current is not None:
            chain.append(current)
            current = self.parent_of(current)
        return chain

    def merged_values(self, row: FlatRow) -> dict[str, Any]:
        """Ancestor values overlaid by the row's own values (row wins)."""
        merged: dict[str, Any] = {}
        for ancestor in reversed(self.ancestors(row)):
            merged.update(ancestor.values)
        merged.update(row.values)
        return merged


# =============================================================================
# DEDUP RULES
# =============================================================================


class MatchMode(StrEnum):
    EXACT = "exact"
    CASE_INSENSITIVE = "caseInsensitive"


class ConflictPolicy(StrEnum):
    REJECT = "reject"
    IGNORE = "ignore"
    MERGE = "merge"  # declared, behaves as reject


@dataclass
class DedupRule:
    id: str
    keys: list[str]
    scope: str = "form"
    match_mode: MatchMode = MatchMode.EXACT
    on_conflict: ConflictPolicy = ConflictPolicy.REJECT
    message: str | dict[str, str] | None = None


# =============================================================================
# FOLLOW-UP CONFIGURATION
# =============================================================================

LocalizedText = str | dict[str, str]


@dataclass
class RecipientLookup:
    """Recipient resolved from an external source keyed by a record field."""

    source: str
    record_field: str
    lookup_column: str
    value_column: str
    fallback: str | None = None


RecipientEntry = str | RecipientLookup


@dataclass
class TemplateCase:
    field_id: str
    equals: list[str]
    template: LocalizedText


@dataclass
class TemplateSelector:
    cases: list[TemplateCase] = field(default_factory=list)
    default: LocalizedText | None = None


TemplateRef = str | dict[str, str] | TemplateSelector


@dataclass
class StatusTransitions:
    on_pdf: LocalizedText | None = None
    on_email: LocalizedText | None = None
    on_close: LocalizedText | None = None


@dataclass
class FollowupConfig:
    pdf_template: TemplateRef | None = None
    email_template: TemplateRef | None = None
    email_subject: LocalizedText | None = None
    to: list[RecipientEntry] = field(default_factory=list)
    cc: list[RecipientEntry] = field(default_factory=list)
    bcc: list[RecipientEntry] = field(default_factory=list)
    status: StatusTransitions = field(default_factory=StatusTransitions)
    status_field_id: str | None = None
    pdf_folder: str | None = None
