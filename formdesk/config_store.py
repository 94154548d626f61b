"""
Form definitions and stored templates, loaded from YAML.

forms/<form_key>.yaml:

    form_key: intake
    title: Intake
    destination: Intake Responses      # optional table name
    fields:
      - id: NAME
        type: TEXT
        labels: {EN: Name, FR: Nom}
      - id: ITEMS
        type: LINE_ITEM_GROUP
        group:
          fields: [...]
          sub_groups:
            - id: ING
              labels: {EN: Ingredients}
              fields: [...]
    dedup:
      - {id: unique-name, keys: NAME, match_mode: caseInsensitive, on_conflict: reject}
    followup:
      pdf_template: {EN: tpl-en, FR: tpl-fr}
      email_template: tpl-mail
      to: ["{{EMAIL}}", {source: Customers, record_field: NAME,
                         lookup_column: Name, value_column: Email}]
      status: {on_pdf: PDF ready, on_close: {EN: Closed, FR: Clôturé}}

templates/<template_id>.yaml holds header/body/footer lists; a string is a
paragraph and {table: [[cell, ...], ...]} is a table.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from . import paths
from .dedup import load_dedup_rules, parse_localized
from .errors import ConfigurationError, NotFound
from .followup.documents import Document, Element, Paragraph, Table, TableRow
from .models import (
    AutoIncrement,
    DedupRule,
    FieldDescriptor,
    FieldType,
    FollowupConfig,
    FormSchema,
    LineItemGroupSchema,
    LookupRef,
    RecipientEntry,
    RecipientLookup,
    StatusTransitions,
    SubGroupSchema,
    TemplateCase,
    TemplateRef,
    TemplateSelector,
)

logger = logging.getLogger(__name__)


@dataclass
class FormDefinition:
    schema: FormSchema
    dedup_rules: list[DedupRule] = field(default_factory=list)
    followup: FollowupConfig | None = None

    @property
    def form_key(self) -> str:
        return self.schema.form_key

    @property
    def title(self) -> str:
        return self.schema.title or self.schema.form_key

    @property
    def table_name(self) -> str:
        return self.schema.table_name


# =============================================================================
# PARSING
# =============================================================================


def _labels(data: dict) -> dict[str, str]:
    raw = data.get("labels")
    if isinstance(raw, dict):
        return {str(k).upper(): str(v) for k, v in raw.items() if v is not None}
    if data.get("label"):
        return {"EN": str(data["label"])}
    return {}


def _field_type(raw: Any, field_id: str) -> FieldType:
    try:
        return FieldType(str(raw or "TEXT").strip().upper())
    except ValueError as e:
        raise ConfigurationError(f"Unknown field type {raw!r} for {field_id}") from e


def parse_field(data: dict) -> FieldDescriptor:
    if not isinstance(data, dict) or not str(data.get("id") or "").strip():
        raise ConfigurationError(f"Field entry without id: {data!r}")
    field_id = str(data["id"]).strip()
    field_type = _field_type(data.get("type"), field_id)

    lookup = None
    if isinstance(data.get("lookup"), dict):
        raw = data["lookup"]
        lookup = LookupRef(source=str(raw.get("source") or ""), key_column=str(raw.get("key_column") or ""))

    auto_increment = None
    if isinstance(data.get("auto_increment"), dict):
        raw = data["auto_increment"]
        auto_increment = AutoIncrement(
            prefix=str(raw.get("prefix") or ""),
            pad_length=int(raw.get("pad_length") or 6),
        )

    group = None
    if field_type == FieldType.LINE_ITEM_GROUP:
        group = parse_group(data.get("group") or {})

    return FieldDescriptor(
        id=field_id,
        type=field_type,
        labels=_labels(data),
        lookup=lookup,
        auto_increment=auto_increment,
        group=group,
    )


def parse_group(data: dict) -> LineItemGroupSchema:
    return LineItemGroupSchema(
        fields=[parse_field(f) for f in data.get("fields") or []],
        sub_groups=[parse_sub_group(s) for s in data.get("sub_groups") or []],
    )


def parse_sub_group(data: dict) -> SubGroupSchema:
    group = parse_group(data)
    return SubGroupSchema(
        fields=group.fields,
        sub_groups=group.sub_groups,
        id=str(data.get("id") or "").strip(),
        labels=_labels(data),
    )


def parse_template_ref(raw: Any) -> TemplateRef | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        return raw.strip()
    if isinstance(raw, dict) and "cases" in raw:
        cases = []
        for case in raw.get("cases") or []:
            equals = case.get("equals")
            cases.append(
                TemplateCase(
                    field_id=str(case.get("field") or case.get("field_id") or ""),
                    equals=[str(v) for v in equals] if isinstance(equals, list) else [str(equals)],
                    template=parse_template_ref(case.get("template")) or "",
                )
            )
        return TemplateSelector(cases=cases, default=parse_template_ref(raw.get("default")))
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items() if v}
    raise ConfigurationError(f"Unsupported template reference: {raw!r}")


def _recipients(raw: Any) -> list[RecipientEntry]:
    if raw is None:
        return []
    if isinstance(raw, (str, dict)):
        raw = [raw]
    entries: list[RecipientEntry] = []
    for entry in raw:
        if isinstance(entry, str):
            entries.append(entry)
        elif isinstance(entry, dict):
            entries.append(
                RecipientLookup(
                    source=str(entry.get("source") or ""),
                    record_field=str(entry.get("record_field") or ""),
                    lookup_column=str(entry.get("lookup_column") or ""),
                    value_column=str(entry.get("value_column") or ""),
                    fallback=entry.get("fallback") or None,
                )
            )
    return entries


def parse_followup(data: dict | None) -> FollowupConfig | None:
    if not data:
        return None
    status = data.get("status") or {}
    return FollowupConfig(
        pdf_template=parse_template_ref(data.get("pdf_template")),
        email_template=parse_template_ref(data.get("email_template")),
        email_subject=parse_localized(data.get("email_subject")),
        to=_recipients(data.get("to")),
        cc=_recipients(data.get("cc")),
        bcc=_recipients(data.get("bcc")),
        status=StatusTransitions(
            on_pdf=parse_localized(status.get("on_pdf")),
            on_email=parse_localized(status.get("on_email")),
            on_close=parse_localized(status.get("on_close")),
        ),
        status_field_id=data.get("status_field_id") or None,
        pdf_folder=data.get("pdf_folder") or None,
    )


def parse_form_definition(data: dict, default_key: str = "") -> FormDefinition:
    if not isinstance(data, dict):
        raise ConfigurationError("Form definition must be a mapping")
    form_key = str(data.get("form_key") or default_key).strip()
    if not form_key:
        raise ConfigurationError("Form definition has no form_key")
    schema = FormSchema(
        form_key=form_key,
        fields=[parse_field(f) for f in data.get("fields") or []],
        title=str(data.get("title") or ""),
        destination=str(data.get("destination") or ""),
    )
    return FormDefinition(
        schema=schema,
        dedup_rules=load_dedup_rules(data.get("dedup") or []),
        followup=parse_followup(data.get("followup")),
    )


# =============================================================================
# REGISTRY
# =============================================================================


def _load_yaml(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e


class FormRegistry:
    """Form definitions by key."""

    def __init__(self, definitions: list[FormDefinition] | None = None):
        self._forms: dict[str, FormDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: FormDefinition) -> None:
        self._forms[definition.form_key] = definition

    def get(self, form_key: str) -> FormDefinition:
        definition = self._forms.get(form_key)
        if definition is None:
            raise NotFound("form", form_key)
        return definition

    def keys(self) -> list[str]:
        return sorted(self._forms)

    @classmethod
    def from_directory(cls, directory: Path | None = None) -> "FormRegistry":
        directory = directory or paths.forms_dir()
        registry = cls()
        for path in sorted(directory.glob("*.y*ml")):
            definition = parse_form_definition(_load_yaml(path) or {}, default_key=path.stem)
            registry.register(definition)
            logger.debug(f"Loaded form {definition.form_key} from {path.name}")
        logger.info(f"Loaded {len(registry.keys())} form definition(s) from {directory}")
        return registry


# =============================================================================
# TEMPLATES
# =============================================================================


def _parse_elements(raw: Any) -> list[Element]:
    elements: list[Element] = []
    for item in raw or []:
        if isinstance(item, dict) and "table" in item:
            rows = [TableRow(cells=["" if c is None else str(c) for c in row]) for row in item["table"] or []]
            elements.append(Table(rows=rows))
        else:
            elements.append(Paragraph(text="" if item is None else str(item)))
    return elements


def _dump_elements(elements: list[Element]) -> list[Any]:
    out: list[Any] = []
    for element in elements:
        if isinstance(element, Paragraph):
            out.append(element.text)
        else:
            out.append({"table": [list(row.cells) for row in element.rows]})
    return out


class FileTemplateRepository:
    """Templates stored as YAML documents under the templates directory."""

    def __init__(self, directory: Path | None = None):
        self.directory = directory or paths.templates_dir()

    def _path(self, template_id: str) -> Path:
        return self.directory / f"{template_id}.yaml"

    def get(self, template_id: str) -> Document | None:
        path = self._path(template_id)
        if not path.exists():
            return None
        data = _load_yaml(path) or {}
        return Document(
            id=template_id,
            name=str(data.get("name") or template_id),
            header=_parse_elements(data.get("header")),
            body=_parse_elements(data.get("body")),
            footer=_parse_elements(data.get("footer")),
        )

    def save(self, document: Document) -> None:
        data = {
            "name": document.name,
            "header": _dump_elements(document.header),
            "body": _dump_elements(document.body),
            "footer": _dump_elements(document.footer),
        }
        path = self._path(document.id)
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False)
        tmp.replace(path)
        logger.info(f"Saved template {document.id}")
