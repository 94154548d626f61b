"""
Tests for follow-up actions.

Tests cover:
- CREATE_PDF rendering, reuse of the linked document and regeneration for dynamic templates
- SEND_EMAIL recipients, subject/body, attachment and localized status
- CLOSE_RECORD default status
- Failure results in the record language (nothing sent, nothing rendered)
"""

import pytest

from formdesk.errors import NotFound
from formdesk.followup import Document
from formdesk.followup.orchestrator import is_dynamic_template
from formdesk.models import Record, TemplateCase, TemplateSelector
from tests.factories import FORM_KEY, sample_values


def run(services, record_id, action):
    return services.orchestrator.run_action(FORM_KEY, record_id, action)


def stored(services, definition, record_id):
    return services.store.get_by_id(definition.schema, record_id)


def french_record(services, definition):
    result = services.store.upsert(definition.schema, Record(language="FR", values=sample_values(NAME="Zoé Martin")))
    return result.record


class TestCreatePdf:
    """PDF generation and reuse."""

    def test_renders_and_links_document(self, services, definition, saved_record, renderer):
        result = run(services, saved_record.id, "CREATE_PDF")

        assert result.success
        assert result.status == "PDF ready"
        assert result.document_url.startswith("memory://documents/d/")
        assert result.updated_at

        rendered = renderer.files[result.file_id]
        assert rendered.name == f"Orders - {saved_record.id}.pdf"
        text = rendered.content.decode("utf-8")
        assert "Order ORD-0001" in text
        assert "Customer: Ann Smith (Customer Name)" in text
        assert "Allergens: Milk, Peanuts" in text
        assert "chef@example.com" in text

        record = stored(services, definition, saved_record.id)
        assert record.pdf_url == result.document_url
        assert record.status == "PDF ready"

    def test_second_run_reuses_document(self, services, saved_record, renderer):
        first = run(services, saved_record.id, "CREATE_PDF")
        second = run(services, saved_record.id, "create_pdf")

        assert second.success
        assert second.document_url == first.document_url
        assert len(renderer.files) == 1

    def test_reuses_document_found_by_name(self, services, definition, saved_record, renderer):
        existing = renderer.render(Document(id="old"), f"Orders - {saved_record.id}.pdf")

        result = run(services, saved_record.id, "CREATE_PDF")

        assert result.file_id == existing.file_id
        assert stored(services, definition, saved_record.id).pdf_url == existing.url

    def test_dynamic_template_regenerates(self, services, definition, saved_record, renderer):
        definition.followup.pdf_template = "bundle:invoice.pdf.html"

        first = run(services, saved_record.id, "CREATE_PDF")
        second = run(services, saved_record.id, "CREATE_PDF")

        assert second.success
        assert second.file_id != first.file_id
        assert list(renderer.files) == [second.file_id]
        assert list(renderer.trashed) == [first.file_id]
        assert stored(services, definition, saved_record.id).pdf_url == second.document_url

    def test_missing_template_id(self, services, definition, saved_record):
        definition.followup.pdf_template = None
        result = run(services, saved_record.id, "CREATE_PDF")
        assert not result.success
        assert result.message == "PDF template ID missing in follow-up config."

    def test_unmatched_selector(self, services, definition, saved_record):
        definition.followup.pdf_template = TemplateSelector(
            cases=[TemplateCase(field_id="MEAL", equals=["Classic"], template="tpl-pdf")]
        )
        result = run(services, saved_record.id, "CREATE_PDF")
        assert result.message == "No PDF template matched the record values/language."

    def test_render_failure(self, services, definition, saved_record, renderer):
        definition.followup.pdf_template = "does-not-exist"

        result = run(services, saved_record.id, "CREATE_PDF")

        assert not result.success
        assert result.message == "Failed to generate PDF."
        assert renderer.files == {}
        assert stored(services, definition, saved_record.id).status is None


class TestSendEmail:
    """Email delivery."""

    def test_sends_with_attachment(self, services, definition, saved_record, mailer):
        result = run(services, saved_record.id, "SEND_EMAIL")

        assert result.success
        assert result.status == "Sent"
        assert len(mailer.sent) == 1
        email = mailer.sent[0]
        assert email.to == ["ann@example.com"]
        assert email.cc == ["chef@example.com"]
        assert email.bcc == []
        assert email.subject == "Your order ORD-0001"
        assert email.body == "Hello Ann Smith, your order is attached."
        assert [a.name for a in email.attachments] == [f"Orders - {saved_record.id}.pdf"]
        assert stored(services, definition, saved_record.id).status == "Sent"

    def test_reuses_existing_pdf(self, services, saved_record, mailer, renderer):
        pdf = run(services, saved_record.id, "CREATE_PDF")
        run(services, saved_record.id, "SEND_EMAIL")

        assert mailer.sent[0].attachments[0].file_id == pdf.file_id
        assert len(renderer.files) == 1

    def test_french_record(self, services, definition, mailer):
        record = french_record(services, definition)

        result = run(services, record.id, "SEND_EMAIL")

        assert result.status == "Envoyé"
        assert mailer.sent[0].subject == f"Votre commande {record.values['ORDER_NO']}"
        assert mailer.sent[0].body.startswith("Bonjour Zoé Martin")

    def test_cc_fallback(self, services, definition, mailer):
        result = services.store.upsert(definition.schema, Record(values=sample_values(MEAL="Classic")))
        run(services, result.record_id, "SEND_EMAIL")
        assert mailer.sent[0].cc == ["kitchen@example.com"]

    def test_without_pdf_template(self, services, definition, saved_record, mailer, renderer):
        definition.followup.pdf_template = None

        result = run(services, saved_record.id, "SEND_EMAIL")

        assert result.success
        assert mailer.sent[0].attachments == []
        assert renderer.files == {}

    def test_empty_recipients(self, services, definition, mailer, renderer):
        created = services.store.upsert(definition.schema, Record(values=sample_values(EMAIL="")))

        result = run(services, created.record_id, "SEND_EMAIL")

        assert not result.success
        assert result.message == "Resolved email recipients are empty."
        assert mailer.sent == []
        assert renderer.files == {}

    def test_recipients_not_configured(self, services, definition, saved_record):
        definition.followup.to = []
        result = run(services, saved_record.id, "SEND_EMAIL")
        assert result.message == "Email recipients not configured."

    def test_email_template_missing(self, services, definition, saved_record):
        definition.followup.email_template = None
        result = run(services, saved_record.id, "SEND_EMAIL")
        assert result.message == "Email template ID missing in follow-up config."

    def test_send_failure_localized(self, services, definition, mailer):
        record = french_record(services, definition)
        mailer.fail_with = "quota exceeded"

        result = run(services, record.id, "SEND_EMAIL")

        assert not result.success
        assert result.message == "Échec de l'envoi de l'e-mail de suivi."
        assert stored(services, definition, record.id).status is None

    def test_failure_cause_in_debug_log(self, services, definition, saved_record, mailer, caplog):
        from formdesk.observability import set_debug_enabled

        set_debug_enabled(True)
        mailer.fail_with = "quota exceeded"
        with caplog.at_level("INFO", logger="formdesk.debug"):
            run(services, saved_record.id, "SEND_EMAIL")

        failures = [r for r in caplog.records if r.getMessage() == "followup.email.failed"]
        assert failures
        assert "quota exceeded" in failures[0].error

    def test_failed_send_keeps_rendered_pdf_visible(self, services, definition, saved_record, mailer, renderer):
        assert stored(services, definition, saved_record.id).pdf_url is None
        mailer.fail_with = "quota exceeded"

        result = run(services, saved_record.id, "SEND_EMAIL")

        assert not result.success
        (file_id,) = renderer.files
        record = stored(services, definition, saved_record.id)
        assert record.pdf_url == renderer.files[file_id].url
        assert record.status is None


class TestCloseRecord:
    """Closing a record."""

    def test_default_status(self, services, definition, saved_record):
        result = run(services, saved_record.id, "CLOSE_RECORD")

        assert result.success
        assert result.status == "Closed"
        assert result.document_url is None
        assert stored(services, definition, saved_record.id).status == "Closed"

    def test_configured_status(self, services, definition, saved_record):
        definition.followup.status.on_close = {"EN": "Archived"}
        assert run(services, saved_record.id, "CLOSE_RECORD").status == "Archived"

    def test_status_written_to_field(self, services, definition, saved_record):
        definition.followup.status_field_id = "EMAIL"
        run(services, saved_record.id, "CLOSE_RECORD")
        assert stored(services, definition, saved_record.id).values["EMAIL"] == "Closed"


class TestActionErrors:
    """Problems reported as failure results."""

    def test_unknown_action(self, services, saved_record):
        result = run(services, saved_record.id, "ARCHIVE")
        assert not result.success
        assert result.message == "Unknown follow-up action."

    def test_record_not_found(self, services):
        result = run(services, "missing", "CREATE_PDF")
        assert result.message == "Record not found."

    def test_not_configured(self, services, definition, saved_record):
        definition.followup = None
        result = run(services, saved_record.id, "CREATE_PDF")
        assert result.message == "Follow-up is not configured for this form."

    def test_unknown_form(self, services):
        with pytest.raises(NotFound):
            services.orchestrator.run_action("nope", "r1", "CREATE_PDF")

    def test_result_dict(self, services, saved_record):
        payload = run(services, saved_record.id, "CLOSE_RECORD").to_dict()
        assert payload["success"] is True
        assert set(payload) == {"success", "message", "status", "document_url", "file_id", "updated_at"}


class TestDynamicTemplates:
    @pytest.mark.parametrize(
        "template_id,expected",
        [("bundle:invoice.pdf.html", True), ("BUNDLE:X.PDF.HTML", True), ("tpl-pdf", False), (None, False)],
    )
    def test_detection(self, template_id, expected):
        assert is_dynamic_template(template_id) is expected
