"""
Follow-up actions on a stored record.

- CREATE_PDF: render the PDF template, or reuse the document already linked
  to the record. Dynamic templates (`bundle:*.pdf.html`) always regenerate
  and the superseded file is trashed.
- SEND_EMAIL: render the email template and send it with the PDF attached
  to every resolved recipient.
- CLOSE_RECORD: write the closing status.

Each successful action writes its configured status (or only refreshes
updated-at) and re-caches the record. Failures come back as FollowupResult
with a message in the record language; collaborator errors are only visible
through debug_log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from ..config import Settings
from ..errors import ExternalResourceFailure, NotFound
from ..models import FollowupConfig, normalize_language
from ..observability import debug_log
from ..store import RecordContext, SubmissionStore
from .channels import DocumentRenderer, MailSender, OutgoingEmail, RenderedDocument, extract_file_id
from .documents import TemplateRepository, render_document
from .flattener import flatten_line_items
from .formatting import apply_placeholders
from .lookup import LookupSource
from .placeholders import build_placeholders
from .recipients import resolve_localized, resolve_recipients, resolve_status_value, resolve_template_id

if TYPE_CHECKING:
    from ..config_store import FormDefinition, FormRegistry

logger = logging.getLogger(__name__)


class FollowupAction(StrEnum):
    CREATE_PDF = "CREATE_PDF"
    SEND_EMAIL = "SEND_EMAIL"
    CLOSE_RECORD = "CLOSE_RECORD"


MESSAGES: dict[str, dict[str, str]] = {
    "unknown_action": {
        "EN": "Unknown follow-up action.",
        "FR": "Action de suivi inconnue.",
        "NL": "Onbekende opvolgactie.",
    },
    "not_configured": {
        "EN": "Follow-up is not configured for this form.",
        "FR": "Le suivi n'est pas configuré pour ce formulaire.",
        "NL": "Opvolging is niet geconfigureerd voor dit formulier.",
    },
    "record_not_found": {
        "EN": "Record not found.",
        "FR": "Enregistrement introuvable.",
        "NL": "Record niet gevonden.",
    },
    "pdf_template_missing": {
        "EN": "PDF template ID missing in follow-up config.",
        "FR": "Identifiant du modèle PDF manquant dans la configuration de suivi.",
        "NL": "PDF-sjabloon-ID ontbreekt in de opvolgconfiguratie.",
    },
    "pdf_template_unmatched": {
        "EN": "No PDF template matched the record values/language.",
        "FR": "Aucun modèle PDF ne correspond aux valeurs/langue de l'enregistrement.",
        "NL": "Geen PDF-sjabloon komt overeen met de waarden/taal van het record.",
    },
    "pdf_failed": {
        "EN": "Failed to generate PDF.",
        "FR": "Échec de la génération du PDF.",
        "NL": "PDF genereren mislukt.",
    },
    "email_template_missing": {
        "EN": "Email template ID missing in follow-up config.",
        "FR": "Identifiant du modèle d'e-mail manquant dans la configuration de suivi.",
        "NL": "E-mailsjabloon-ID ontbreekt in de opvolgconfiguratie.",
    },
    "email_template_unmatched": {
        "EN": "No email template matched the record values/language.",
        "FR": "Aucun modèle d'e-mail ne correspond aux valeurs/langue de l'enregistrement.",
        "NL": "Geen e-mailsjabloon komt overeen met de waarden/taal van het record.",
    },
    "recipients_missing": {
        "EN": "Email recipients not configured.",
        "FR": "Destinataires de l'e-mail non configurés.",
        "NL": "E-mailontvangers niet geconfigureerd.",
    },
    "recipients_empty": {
        "EN": "Resolved email recipients are empty.",
        "FR": "Aucun destinataire d'e-mail résolu.",
        "NL": "Er zijn geen e-mailontvangers gevonden.",
    },
    "email_failed": {
        "EN": "Failed to send follow-up email.",
        "FR": "Échec de l'envoi de l'e-mail de suivi.",
        "NL": "Verzenden van de opvolgmail mislukt.",
    },
}


def localized_message(code: str, language: str | None = None) -> str:
    texts = MESSAGES[code]
    return texts.get(normalize_language(language), texts["EN"])


def is_dynamic_template(template_id: str | None) -> bool:
    """Dynamic templates regenerate on every request instead of reusing a stored PDF."""
    normalized = (template_id or "").strip().lower()
    return normalized.startswith("bundle:") and normalized.endswith(".pdf.html")


@dataclass
class FollowupResult:
    success: bool
    message: str | None = None
    status: str | None = None
    document_url: str | None = None
    file_id: str | None = None
    updated_at: str | None = None

    @staticmethod
    def ok(
        status: str | None = None,
        document_url: str | None = None,
        file_id: str | None = None,
        updated_at: str | None = None,
    ) -> FollowupResult:
        return FollowupResult(
            success=True,
            status=status,
            document_url=document_url,
            file_id=file_id,
            updated_at=updated_at,
        )

    @staticmethod
    def failure(message: str) -> FollowupResult:
        return FollowupResult(success=False, message=message)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "status": self.status,
            "document_url": self.document_url,
            "file_id": self.file_id,
            "updated_at": self.updated_at,
        }


class _ActionFailed(Exception):
    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


class FollowupOrchestrator:
    def __init__(
        self,
        registry: FormRegistry,
        store: SubmissionStore,
        templates: TemplateRepository,
        renderer: DocumentRenderer,
        mailer: MailSender,
        lookup: LookupSource | None = None,
        settings: Settings | None = None,
    ):
        self.registry = registry
        self.store = store
        self.templates = templates
        self.renderer = renderer
        self.mailer = mailer
        self.lookup = lookup
        self.settings = settings or Settings()

    def run_action(self, form_key: str, record_id: str, action: str) -> FollowupResult:
        """
        Run one follow-up action.

        Raises NotFound for an unknown form; every other problem is a
        failure result.
        """
        definition = self.registry.get(form_key)
        try:
            kind = FollowupAction(str(action or "").strip().upper())
        except ValueError:
            return FollowupResult.failure(localized_message("unknown_action"))

        context = self.store.get_record_context(definition.schema, record_id)
        if context is None or context.record is None:
            return FollowupResult.failure(localized_message("record_not_found"))
        language = context.record.language
        followup = definition.followup
        if followup is None:
            return FollowupResult.failure(localized_message("not_configured", language))

        logger.info(f"Follow-up {kind} on {form_key}/{record_id}")
        try:
            if kind == FollowupAction.CREATE_PDF:
                return self._create_pdf(definition, followup, context)
            if kind == FollowupAction.SEND_EMAIL:
                return self._send_email(definition, followup, context)
            return self._close_record(followup, context)
        except _ActionFailed as e:
            return FollowupResult.failure(localized_message(e.code, language))

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _create_pdf(
        self, definition: FormDefinition, followup: FollowupConfig, context: RecordContext
    ) -> FollowupResult:
        if not followup.pdf_template:
            raise _ActionFailed("pdf_template_missing")
        template_id = resolve_template_id(followup.pdf_template, context.record)
        if not template_id:
            raise _ActionFailed("pdf_template_unmatched")

        allow_reuse = not is_dynamic_template(template_id)
        existing = self._existing_document(definition, followup, context)
        if allow_reuse and existing is not None:
            debug_log("followup.pdf.reuse", record_id=context.record.id, file_id=existing.file_id)
            return self._finish(followup, context, "on_pdf", existing)

        if existing is not None:
            debug_log("followup.pdf.reuseSkippedForDynamicTemplate", record_id=context.record.id)
        rendered = self._render_pdf(definition, followup, context, template_id)
        if existing is not None and not allow_reuse and existing.file_id != rendered.file_id:
            self.renderer.trash(existing.file_id)
        return self._finish(followup, context, "on_pdf", rendered)

    def _send_email(
        self, definition: FormDefinition, followup: FollowupConfig, context: RecordContext
    ) -> FollowupResult:
        if not followup.email_template:
            raise _ActionFailed("email_template_missing")
        if not followup.to:
            raise _ActionFailed("recipients_missing")
        record = context.record

        rows = flatten_line_items(record, definition.schema)
        placeholders = build_placeholders(record, definition.schema, rows, self.lookup)
        to = resolve_recipients(followup.to, placeholders, record, self.lookup)
        if not to:
            raise _ActionFailed("recipients_empty")
        cc = resolve_recipients(followup.cc, placeholders, record, self.lookup)
        bcc = resolve_recipients(followup.bcc, placeholders, record, self.lookup)
        template_id = resolve_template_id(followup.email_template, record)
        if not template_id:
            raise _ActionFailed("email_template_unmatched")

        attachment = None
        if followup.pdf_template:
            pdf_template_id = resolve_template_id(followup.pdf_template, record)
            if not pdf_template_id:
                raise _ActionFailed("pdf_template_unmatched")
            if not is_dynamic_template(pdf_template_id):
                attachment = self._existing_document(definition, followup, context)
            if attachment is None:
                attachment = self._render_pdf(definition, followup, context, pdf_template_id)
            else:
                debug_log("followup.email.reusePdf", file_id=attachment.file_id)

        try:
            template = self.templates.get(template_id)
            if template is None:
                raise NotFound("email template", template_id)
            body = apply_placeholders(template.plain_text, placeholders)
            subject = apply_placeholders(resolve_localized(followup.email_subject, record.language), placeholders)
            email = OutgoingEmail(
                to=to,
                subject=subject.strip() or f"{definition.title} submission {record.id}",
                body=body or "See attached PDF.",
                cc=cc,
                bcc=bcc,
                html_body=body.replace("\n", "<br/>"),
                attachments=[attachment] if attachment is not None else [],
            )
            debug_log(
                "followup.email.send",
                template_id=template_id,
                to_count=len(to),
                cc_count=len(cc),
                bcc_count=len(bcc),
                has_attachment=attachment is not None,
            )
            result = self.mailer.send(email)
            if not result.success:
                raise ExternalResourceFailure(result.error or "send failed")
        except Exception as e:
            debug_log("followup.email.failed", record_id=record.id, error=str(e))
            raise _ActionFailed("email_failed") from e

        return self._finish(followup, context, "on_email", attachment)

    def _close_record(self, followup: FollowupConfig, context: RecordContext) -> FollowupResult:
        return self._finish(followup, context, "on_close", None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _expected_file_name(self, definition: FormDefinition, context: RecordContext) -> str:
        return f"{definition.title} - {context.record.id}.pdf"

    def _existing_document(
        self, definition: FormDefinition, followup: FollowupConfig, context: RecordContext
    ) -> RenderedDocument | None:
        """The document linked to the record, else one stored under the expected name."""
        try:
            file_id = extract_file_id(context.record.pdf_url)
            if file_id:
                found = self.renderer.find(file_id)
                if found is not None:
                    return found
            return self.renderer.find_by_name(self._expected_file_name(definition, context), followup.pdf_folder)
        except Exception as e:
            debug_log("followup.pdf.findFailed", error=str(e))
            return None

    def _render_pdf(
        self,
        definition: FormDefinition,
        followup: FollowupConfig,
        context: RecordContext,
        template_id: str,
    ) -> RenderedDocument:
        record = context.record
        try:
            template = self.templates.get(template_id)
            if template is None:
                raise NotFound("PDF template", template_id)
            rows = flatten_line_items(record, definition.schema)
            mapping = build_placeholders(record, definition.schema, rows, self.lookup)
            document = render_document(template, definition.schema, rows, mapping, self.lookup)
            name = self._expected_file_name(definition, context)
            rendered = self.renderer.render(document, name, followup.pdf_folder)
        except Exception as e:
            debug_log("followup.pdf.failed", record_id=record.id, template_id=template_id, error=str(e))
            raise _ActionFailed("pdf_failed") from e
        self.store.write_document_url(context, rendered.url)
        return rendered

    def _finish(
        self,
        followup: FollowupConfig,
        context: RecordContext,
        transition: str,
        document: RenderedDocument | None,
    ) -> FollowupResult:
        if document is not None and context.record.pdf_url != document.url:
            self.store.write_document_url(context, document.url)
        status = resolve_status_value(
            followup.status,
            transition,
            context.record.language,
            include_default_on_close=transition == "on_close",
        )
        updated_at = self.store.write_status(context, status, followup.status_field_id) if status else None
        if not updated_at:
            updated_at = self.store.touch_updated_at(context)
        self.store.refresh_record_cache(context)
        return FollowupResult.ok(
            status=status or context.record.status,
            document_url=document.url if document is not None else None,
            file_id=document.file_id if document is not None else None,
            updated_at=updated_at or context.record.updated_at,
        )
