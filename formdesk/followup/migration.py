"""
Legacy placeholder migration.

Older templates reference fields by a slug of their English label
(`{{CUSTOMER_NAME}}`, `{{ITEMS.UNIT_PRICE}}`, `{{ITEMS.Ingredients.QTY}}`).
migrate_template() rewrites those keys to canonical field/subgroup ids in
every wrapper form the renderer understands, case-insensitively, across the
header, body and footer of one stored template.

A key is never guessed: a slug shared by two or more ids, or a slug that is
also another real id at the same level, is left alone and reported once in
the warnings. Rewritten templates contain only canonical keys, so a second
run applies nothing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from ..models import FormSchema, LineItemGroupSchema, TemplateRef, TemplateSelector
from .documents import TemplateRepository
from .formatting import slugify_placeholder

logger = logging.getLogger(__name__)

# Each entry is the chain of function wrappers around the key, outermost first.
TOKEN_WRAPPERS: list[tuple[str, ...]] = [
    (),
    ("LABEL",),
    ("CONSOLIDATED",),
    ("SUM",),
    ("COUNT",),
    ("CONSOLIDATED_ROW",),
    ("ALWAYS_SHOW",),
    ("ALWAYS_SHOW", "CONSOLIDATED_ROW"),
]


@dataclass
class KeyRewrite:
    source: str
    target: str
    reason: str


@dataclass
class MigrationResult:
    success: bool
    template_id: str
    message: str
    warnings: list[str] = field(default_factory=list)
    rewrites: dict[str, int] = field(default_factory=dict)

    @staticmethod
    def ok(
        template_id: str,
        message: str,
        warnings: list[str] | None = None,
        rewrites: dict[str, int] | None = None,
    ) -> MigrationResult:
        return MigrationResult(
            success=True,
            template_id=template_id,
            message=message,
            warnings=warnings or [],
            rewrites=rewrites or {},
        )

    @staticmethod
    def failure(template_id: str, message: str, warnings: list[str] | None = None) -> MigrationResult:
        return MigrationResult(success=False, template_id=template_id, message=message, warnings=warnings or [])

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "template_id": self.template_id,
            "message": self.message,
            "warnings": self.warnings,
            "rewrites": self.rewrites,
        }


# =============================================================================
# KEY REWRITES
# =============================================================================


def _join(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def _english_label(labels: dict[str, str]) -> str:
    return (labels.get("EN") or labels.get("en") or "").strip()


def _accepted_aliases(
    candidates: list[tuple[str, str]],
    real_ids: set[str],
    scope: str,
    warnings: list[str],
    variants: dict[str, list[str]] | None = None,
) -> dict[str, list[str]]:
    """
    Alias keys that can be safely rewritten, grouped by target id.

    candidates holds (alias, id) pairs. Aliases compare case-insensitively
    because token matching does. variants maps an upper-cased alias to other
    spellings of the same legacy key; they are accepted or skipped together
    with that alias.
    """
    by_alias: dict[str, list[str]] = {}
    spelling: dict[str, str] = {}
    for alias, target in candidates:
        if not alias:
            continue
        key = alias.upper()
        spelling.setdefault(key, alias)
        ids = by_alias.setdefault(key, [])
        if target not in ids:
            ids.append(target)

    real_upper = {r.upper() for r in real_ids}
    accepted: dict[str, list[str]] = {}
    for key, ids in by_alias.items():
        alias = spelling[key]
        if len(ids) != 1:
            warnings.append(
                f'Ambiguous label key "{alias}" in {scope} maps to multiple IDs ({", ".join(ids)}). '
                "Skipping migration for this key."
            )
            continue
        target = ids[0]
        if key in real_upper and key != target.upper():
            warnings.append(
                f'Label key "{alias}" in {scope} is also a real ID (conflicts with {target}). '
                "Skipping migration for this key."
            )
            continue
        kept = accepted.setdefault(target, [])
        for candidate in [alias, *(variants or {}).get(key, [])]:
            upper = candidate.upper()
            if upper == target.upper() or upper in real_upper:
                continue
            if all(upper != k.upper() for k in kept):
                kept.append(candidate)
    return {target: aliases for target, aliases in accepted.items() if aliases}


def _group_rewrites(
    prefixes: list[str],
    group: LineItemGroupSchema,
    scope: str,
    rewrites: list[KeyRewrite],
    warnings: list[str],
) -> None:
    """
    Rewrites for one group level.

    prefixes[0] is the canonical path; the others are legacy spellings of the
    same path that also get rewritten onto it.
    """
    canonical = prefixes[0]
    field_ids = {f.id for f in group.fields}
    sub_ids = {s.id for s in group.sub_groups if s.id}
    level_ids = field_ids | sub_ids

    field_aliases = _accepted_aliases(
        [(slugify_placeholder(f.label_en), f.id) for f in group.fields],
        level_ids,
        scope,
        warnings,
    )
    for descriptor in group.fields:
        for prefix in prefixes:
            for alias in [descriptor.id, *field_aliases.get(descriptor.id, [])]:
                if prefix == canonical and alias == descriptor.id:
                    continue
                rewrites.append(
                    KeyRewrite(_join(prefix, alias), _join(canonical, descriptor.id), "field.labelSlug->id")
                )

    candidates: list[tuple[str, str]] = []
    variants: dict[str, list[str]] = {}
    for sub in group.sub_groups:
        if not sub.id:
            warnings.append(f'Group "{scope}" has a subgroup without id. Cannot migrate subgroup placeholders safely.')
            continue
        legacy_key = _english_label(sub.labels)
        if legacy_key:
            slug = slugify_placeholder(legacy_key)
            candidates.append((slug, sub.id))
            if legacy_key.upper() != slug.upper():
                variants.setdefault(slug.upper(), []).append(legacy_key)
    sub_aliases = _accepted_aliases(candidates, level_ids, scope, warnings, variants)

    for sub in group.sub_groups:
        if not sub.id:
            continue
        child_canonical = _join(canonical, sub.id)
        child_prefixes = [child_canonical]
        for prefix in prefixes:
            for alias in [sub.id, *sub_aliases.get(sub.id, [])]:
                if prefix == canonical and alias == sub.id:
                    continue
                legacy = _join(prefix, alias)
                child_prefixes.append(legacy)
                # COUNT/CONSOLIDATED sometimes address the subgroup itself.
                rewrites.append(KeyRewrite(legacy, child_canonical, "subGroup.labelKey->id"))
        _group_rewrites(child_prefixes, sub, child_canonical, rewrites, warnings)


def build_key_rewrites(schema: FormSchema) -> tuple[list[KeyRewrite], list[str]]:
    rewrites: list[KeyRewrite] = []
    warnings: list[str] = []

    data_fields = schema.data_fields()
    top_aliases = _accepted_aliases(
        [(slugify_placeholder(f.label_en), f.id) for f in data_fields],
        {f.id for f in data_fields},
        f"form {schema.form_key}",
        warnings,
    )
    for descriptor in data_fields:
        for alias in top_aliases.get(descriptor.id, []):
            rewrites.append(KeyRewrite(alias, descriptor.id, "question.labelSlug->id"))

    for descriptor in schema.group_fields():
        if descriptor.group is not None:
            _group_rewrites([descriptor.id], descriptor.group, descriptor.id, rewrites, warnings)

    # First rewrite wins for a given legacy key.
    seen: set[str] = set()
    deduped = []
    for rewrite in rewrites:
        key = rewrite.source.upper()
        if key in seen:
            continue
        seen.add(key)
        deduped.append(rewrite)
    return deduped, warnings


# =============================================================================
# TOKEN PATTERNS
# =============================================================================


def wrap_token(wrappers: tuple[str, ...], key: str) -> str:
    text = key
    for name in reversed(wrappers):
        text = f"{name}({text})"
    return "{{" + text + "}}"


def token_pattern(wrappers: tuple[str, ...], key: str) -> re.Pattern:
    inner = r"\s*\.\s*".join(re.escape(seg) for seg in key.split("."))
    for name in reversed(wrappers):
        inner = name + r"\s*\(\s*" + inner + r"\s*\)"
    return re.compile(r"\{\{\s*" + inner + r"\s*\}\}", re.IGNORECASE)


# =============================================================================
# MIGRATION
# =============================================================================


def collect_template_ids(ref: TemplateRef | None) -> list[str]:
    """Every template id a template reference can resolve to."""
    if not ref:
        return []
    if isinstance(ref, str):
        return [ref.strip()] if ref.strip() else []
    if isinstance(ref, TemplateSelector):
        out: list[str] = []
        for case in ref.cases:
            out.extend(collect_template_ids(case.template))
        out.extend(collect_template_ids(ref.default))
        return list(dict.fromkeys(out))
    if isinstance(ref, dict):
        return list(dict.fromkeys(str(v).strip() for v in ref.values() if v and str(v).strip()))
    return []


def migrate_template(schema: FormSchema, template_id: str, templates: TemplateRepository) -> MigrationResult:
    template_id = (template_id or "").strip()
    if not template_id:
        return MigrationResult.failure("", "templateId is required.")

    key_rewrites, warnings = build_key_rewrites(schema)
    for warning in warnings:
        logger.warning(f"Template {template_id}: {warning}")

    document = templates.get(template_id)
    if document is None:
        return MigrationResult.failure(template_id, f"Template not found: {template_id}", warnings)
    if not key_rewrites:
        return MigrationResult.ok(template_id, "No legacy label-based placeholders detected for migration.", warnings)

    patterns = [
        (wrap_token(wrappers, r.source), token_pattern(wrappers, r.source), wrap_token(wrappers, r.target))
        for r in key_rewrites
        for wrappers in TOKEN_WRAPPERS
    ]
    applied: dict[str, int] = {}

    def rewrite(text: str) -> str:
        for label, pattern, replacement in patterns:
            text, count = pattern.subn(lambda _m, r=replacement: r, text)
            if count:
                applied[label] = applied.get(label, 0) + count
        return text

    try:
        document.map_texts(rewrite)
        if applied:
            templates.save(document)
    except Exception as e:
        logger.error(f"Failed to migrate template {template_id}: {e}")
        return MigrationResult.failure(template_id, f"Failed to migrate template placeholders: {e}", warnings)

    message = (
        f"Template migration complete. Applied {len(applied)} token rewrite patterns across body/header/footer."
    )
    logger.info(f"Template {template_id}: {message}")
    return MigrationResult.ok(template_id, message, warnings, applied)
