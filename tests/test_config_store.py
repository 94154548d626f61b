"""
Tests for YAML form definitions and stored templates.
"""

import pytest
import yaml

from formdesk.config_store import FileTemplateRepository, FormRegistry, parse_form_definition
from formdesk.errors import ConfigurationError, NotFound
from formdesk.followup import Document, Paragraph, Table, TableRow
from formdesk.models import FieldType, MatchMode, RecipientLookup, TemplateSelector

FORM_YAML = """
form_key: intake
title: Intake
fields:
  - id: NAME
    labels: {EN: Name, fr: Nom}
  - id: NUM
    label: Number
    auto_increment: {prefix: "IN-", pad_length: 3}
  - id: MEAL
    lookup: {source: Meals, key_column: Name}
  - id: ITEMS
    type: line_item_group
    group:
      fields:
        - {id: DISH}
        - {id: QTY, type: NUMBER}
      sub_groups:
        - id: ING
          labels: {EN: Ingredients}
          fields: [{id: ALLERGEN}]
dedup:
  - {id: unique-name, keys: "NAME, MEAL", match_mode: caseInsensitive}
followup:
  pdf_template:
    cases:
      - {field: MEAL, equals: [Vegan], template: {EN: tpl-vegan}}
    default: tpl-default
  email_template: tpl-mail
  email_subject: {EN: Hello, FR: Bonjour}
  to: "{{EMAIL}}"
  cc:
    - {source: Meals, record_field: MEAL, lookup_column: Name, value_column: Chef, fallback: kitchen@example.com}
  status: {on_pdf: PDF ready, on_close: {EN: Closed, FR: Clôturé}}
"""


class TestParseFormDefinition:
    """YAML form definitions."""

    def test_schema(self):
        definition = parse_form_definition(yaml.safe_load(FORM_YAML))

        assert definition.form_key == "intake"
        assert definition.title == "Intake"
        assert definition.table_name == "Intake Responses"
        schema = definition.schema
        assert schema.field("NAME").labels == {"EN": "Name", "FR": "Nom"}
        assert schema.field("NUM").label() == "Number"
        assert schema.field("NUM").auto_increment.prefix == "IN-"
        assert schema.field("MEAL").lookup.source == "Meals"
        assert schema.field("ITEMS").type == FieldType.LINE_ITEM_GROUP
        assert schema.resolve_group("ITEMS.ING").fields[0].id == "ALLERGEN"
        assert schema.resolve_group("ITEMS").field("QTY").type == FieldType.NUMBER

    def test_dedup_and_followup(self):
        definition = parse_form_definition(yaml.safe_load(FORM_YAML))

        rule = definition.dedup_rules[0]
        assert rule.keys == ["NAME", "MEAL"]
        assert rule.match_mode == MatchMode.CASE_INSENSITIVE

        followup = definition.followup
        assert isinstance(followup.pdf_template, TemplateSelector)
        assert followup.pdf_template.cases[0].template == {"EN": "tpl-vegan"}
        assert followup.pdf_template.default == "tpl-default"
        assert followup.to == ["{{EMAIL}}"]
        assert isinstance(followup.cc[0], RecipientLookup)
        assert followup.cc[0].fallback == "kitchen@example.com"
        assert followup.status.on_close == {"EN": "Closed", "FR": "Clôturé"}

    def test_default_key(self):
        definition = parse_form_definition({"fields": [{"id": "A"}]}, default_key="from-file")
        assert definition.form_key == "from-file"
        assert definition.followup is None

    @pytest.mark.parametrize(
        "data",
        [
            {"fields": [{"id": "A"}]},
            {"form_key": "f", "fields": [{"label": "no id"}]},
            {"form_key": "f", "fields": [{"id": "A", "type": "SIGNATURE"}]},
            {"form_key": "f", "fields": [{"id": "A"}, {"id": "A"}]},
            ["not", "a", "mapping"],
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(ConfigurationError):
            parse_form_definition(data)


class TestFormRegistry:
    """Definitions loaded from the forms directory."""

    def test_from_directory(self, tmp_path):
        (tmp_path / "intake.yaml").write_text(FORM_YAML, encoding="utf-8")
        (tmp_path / "orders.yml").write_text("title: Orders\nfields: [{id: NAME}]\n", encoding="utf-8")

        registry = FormRegistry.from_directory(tmp_path)

        assert registry.keys() == ["intake", "orders"]
        assert registry.get("orders").title == "Orders"

    def test_default_directory_under_home(self, isolated_home):
        forms = isolated_home / "config" / "forms"
        forms.mkdir(parents=True)
        (forms / "intake.yaml").write_text(FORM_YAML, encoding="utf-8")

        assert FormRegistry.from_directory().keys() == ["intake"]

    def test_unknown_form(self):
        with pytest.raises(NotFound):
            FormRegistry().get("missing")

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "bad.yaml").write_text("fields: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            FormRegistry.from_directory(tmp_path)


class TestFileTemplateRepository:
    """Templates stored as YAML."""

    def test_load(self, tmp_path):
        (tmp_path / "tpl.yaml").write_text(
            "name: Confirmation\n"
            "header: ['Order {{ORDER_NO}}']\n"
            "body:\n"
            "  - 'Hello {{NAME}}'\n"
            "  - table: [['{{ITEMS.DISH}}', '{{ITEMS.QTY}}'], [Total, null]]\n",
            encoding="utf-8",
        )

        doc = FileTemplateRepository(tmp_path).get("tpl")

        assert doc.name == "Confirmation"
        assert doc.header[0].text == "Order {{ORDER_NO}}"
        assert isinstance(doc.body[1], Table)
        assert doc.body[1].rows[1].cells == ["Total", ""]
        assert doc.footer == []

    def test_save_then_get(self, tmp_path):
        repo = FileTemplateRepository(tmp_path)
        repo.save(
            Document(
                id="tpl",
                name="Saved",
                body=[Paragraph(text="Clôturé {{NAME}}"), Table(rows=[TableRow(cells=["a", "b"])])],
            )
        )

        doc = repo.get("tpl")
        assert doc.body[0].text == "Clôturé {{NAME}}"
        assert doc.body[1].rows[0].cells == ["a", "b"]
        assert not (tmp_path / "tpl.tmp").exists()

    def test_missing(self, tmp_path):
        assert FileTemplateRepository(tmp_path).get("nope") is None
