"""
Value formatting and placeholder substitution for follow-up templates.

Tokens look like `{{KEY}}`. Every key is registered under its UPPER, lower
and Title_Case spellings (per dot segment) so template authors can use any
of them. apply_placeholders() also understands `{{DEFAULT(KEY, "text")}}`
and tolerates whitespace inside the braces.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CHECK_MARK = "✔"
CROSS_MARK = "❌"

TRUTHY_WORDS = frozenset({"true", "yes", "y", "oui", "o", "ja", "j"})
FALSY_WORDS = frozenset({"false", "no", "n", "non", "nee"})
BOOLEAN_TYPES = frozenset({"CHECKBOX", "BOOLEAN", "YES_NO", "YESNO", "TOGGLE", "SWITCH"})

_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

_SLUG_RE = re.compile(r"[^A-Z0-9]+")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ISO_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[T\s].*")
_DMY_RE = re.compile(r"^\d{1,2}[/-]\d{1,2}[/-]\d{2,4}$")
_SERIAL_RE = re.compile(r"^\d{4,}$")
_LEADING_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")
_TOKEN_RE = re.compile(r"{{\s*([^{}]*?)\s*}}")
_DEFAULT_RE = re.compile(r"{{\s*DEFAULT\s*\(\s*(.*?)\s*\)\s*}}", re.IGNORECASE | re.DOTALL)

_SHEETS_EPOCH = date(1899, 12, 30)


# =============================================================================
# KEYS
# =============================================================================


def slugify_placeholder(label: str) -> str:
    """Legacy label key: upper-cased, runs of non-alphanumerics become "_"."""
    return _SLUG_RE.sub("_", (label or "").upper())


def _title_segment(segment: str) -> str:
    return "_".join(word[:1].upper() + word[1:] if word else "" for word in segment.lower().split("_"))


def placeholder_keys(raw: str) -> list[str]:
    """UPPER, lower and Title_Case spellings of a dotted key, de-duplicated."""
    segments = [seg.strip() for seg in (raw or "").split(".")]
    variants = [
        ".".join(seg.upper() for seg in segments),
        ".".join(seg.lower() for seg in segments),
        ".".join(_title_segment(seg) for seg in segments),
    ]
    return list(dict.fromkeys(variants))


def add_placeholder_variants(
    mapping: dict[str, str],
    key: str,
    value: Any,
    field_type: str | None = None,
    preformatted: bool = False,
) -> None:
    if not key:
        return
    text = value if preformatted else format_template_value(value, field_type)
    for token in placeholder_keys(key):
        mapping[f"{{{{{token}}}}}"] = text


def add_wrapped_variants(mapping: dict[str, str], wrapper: str, key: str, text: str) -> None:
    """Register WRAPPER(key) under every spelling of key."""
    for token in placeholder_keys(key):
        mapping[f"{{{{{wrapper}({token})}}}}"] = text


# =============================================================================
# DATES
# =============================================================================


def _from_serial(days: float) -> str | None:
    if 30000 < days < 90000:
        return (_SHEETS_EPOCH + timedelta(days=int(days))).isoformat()
    return None


def normalize_to_iso_date(value: Any) -> str | None:
    """YYYY-MM-DD for dates, ISO strings, d/m/y strings and sheet serials."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)):
        return _from_serial(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if _ISO_DATE_RE.match(text):
        return text
    if _ISO_DATETIME_RE.match(text):
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(UTC)
            return parsed.date().isoformat()
    if _DMY_RE.match(text):
        a, b, c = re.split(r"[/-]", text)
        year = int(f"20{c}") if len(c) == 2 else int(c)
        try:
            return date(year, int(b), int(a)).isoformat()
        except ValueError:
            return None
    if _SERIAL_RE.match(text):
        return _from_serial(int(text))
    return None


def format_iso_date_label(iso: str) -> str:
    """2024-03-05 -> "Tue, 05-Mar-2024"."""
    text = (iso or "").strip()
    if not _ISO_DATE_RE.match(text):
        return text
    try:
        d = date.fromisoformat(text)
    except ValueError:
        return text
    return f"{_DAYS[d.weekday()]}, {d.day:02d}-{_MONTHS[d.month - 1]}-{d.year}"


# =============================================================================
# VALUES
# =============================================================================


def _as_bool(value: Any, field_type: str) -> bool | None:
    if value is True or value is False:
        return value
    is_bool_type = field_type in BOOLEAN_TYPES
    if isinstance(value, (int, float)) and is_bool_type:
        if value == 1:
            return True
        if value == 0:
            return False
    if isinstance(value, str):
        word = value.strip().lower()
        if not word:
            return None
        if is_bool_type and word in ("1", "0"):
            return word == "1"
        if word in TRUTHY_WORDS:
            return True
        if word in FALSY_WORDS:
            return False
    return None


def _pairs(mapping: dict) -> str:
    return ", ".join(f"{k}: {'' if v is None else v}" for k, v in mapping.items())


def format_template_value(value: Any, field_type: str | None = None) -> str:
    """
    Render one value as template text.

    DATE values become "Ddd, DD-Mon-YYYY"; yes/no words (EN/FR/NL) become
    check/cross glyphs; lists of mappings render one "key: value" line per
    entry; lists join with ", ".
    """
    if value is None:
        return ""
    kind = (field_type or "").strip().upper()
    if kind == "DATE":
        iso = normalize_to_iso_date(value)
        return format_iso_date_label(iso) if iso else ""

    flag = _as_bool(value, kind)
    if flag is not None:
        return CHECK_MARK if flag else CROSS_MARK

    if isinstance(value, (list, tuple)):
        if value and isinstance(value[0], dict):
            return "\n".join(_pairs(entry) if isinstance(entry, dict) else str(entry) for entry in value)
        return ", ".join("" if v is None else str(v) for v in value)
    if isinstance(value, dict):
        return _pairs(value)
    if not kind:
        iso = normalize_to_iso_date(value) if isinstance(value, (str, date)) else None
        if iso:
            return iso
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_decimal(value: Any) -> Decimal | None:
    """
    Lenient numeric parse: comma decimals accepted, trailing junk ignored
    ("1,5 kg" -> 1.5), anything without a leading number is None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    text = str(value).strip().replace(",", ".", 1)
    match = _LEADING_NUMBER_RE.match(text)
    if not match:
        return None
    try:
        return Decimal(match.group(0))
    except InvalidOperation:
        return None


def format_sum(total: Decimal | None) -> str:
    """Rounded to 2 decimals, trailing zeros dropped, "0" when nothing summed."""
    if total is None:
        return "0"
    rounded = total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP).normalize()
    if rounded == 0:
        return "0"
    return format(rounded, "f")


# =============================================================================
# SUBSTITUTION
# =============================================================================


def _normalize_key(raw: str) -> str:
    key = (raw or "").strip()
    if key.startswith("{{") and key.endswith("}}"):
        key = key[2:-2].strip()
    return ".".join(seg.strip() for seg in key.split(".") if seg.strip())


def lookup_placeholder(mapping: dict[str, str], raw_key: str) -> str | None:
    key = _normalize_key(raw_key)
    if not key:
        return None
    for variant in [*placeholder_keys(key), key]:
        token = f"{{{{{variant}}}}}"
        if token in mapping:
            return mapping[token] or ""
    return None


def _split_args(raw: str) -> list[str]:
    args, current, quote = [], "", None
    for ch in raw:
        if quote:
            current += ch
            if ch == quote:
                quote = None
            continue
        if ch in "\"'":
            quote = ch
            current += ch
        elif ch == ",":
            args.append(current.strip())
            current = ""
        else:
            current += ch
    if current.strip():
        args.append(current.strip())
    return args


def _strip_quotes(text: str) -> str:
    text = (text or "").strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        return text[1:-1]
    return text


def _apply_defaults(text: str, mapping: dict[str, str]) -> str:
    def replace(match: re.Match) -> str:
        args = _split_args(match.group(1) or "")
        if len(args) < 2:
            return match.group(0)
        current = lookup_placeholder(mapping, _strip_quotes(args[0])) or ""
        if current.strip():
            return current
        return _strip_quotes(",".join(args[1:]))

    return _DEFAULT_RE.sub(replace, text)


def apply_placeholders(text: str, mapping: dict[str, str]) -> str:
    """Substitute every known token; unknown tokens are left as written."""
    if not text:
        return ""
    output = _apply_defaults(text, mapping) if "DEFAULT" in text.upper() else text

    def replace(match: re.Match) -> str:
        inner = match.group(1)
        exact = f"{{{{{inner}}}}}"
        if exact in mapping:
            return mapping[exact] or ""
        dotted = ".".join(seg.strip() for seg in inner.split("."))
        token = f"{{{{{dotted}}}}}"
        if token in mapping:
            return mapping[token] or ""
        return match.group(0)

    return _TOKEN_RE.sub(replace, output)
