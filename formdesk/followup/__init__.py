"""
Follow-up processing for stored records.

Provides:
- flatten_line_items: nested repeating groups as path-addressed rows
- build_placeholders / apply_placeholders: token map and substitution
- render_document: table row cloning, GROUP_TABLE and token substitution
- migrate_template: legacy label-slug tokens rewritten to ids
- FollowupOrchestrator: CREATE_PDF, SEND_EMAIL, CLOSE_RECORD
"""

from .channels import (
    DocumentRenderer,
    GmailSender,
    InMemoryDocumentRenderer,
    MailSender,
    OutgoingEmail,
    RecordingMailSender,
    RenderedDocument,
)
from .documents import Document, InMemoryTemplateRepository, Paragraph, Table, TableRow, render_document
from .flattener import flatten_line_items
from .formatting import apply_placeholders
from .lookup import InMemoryLookup, LookupSource, TableLookup
from .migration import MigrationResult, build_key_rewrites, collect_template_ids, migrate_template
from .orchestrator import FollowupAction, FollowupOrchestrator, FollowupResult
from .placeholders import build_placeholders

__all__ = [
    # Rendering
    "Document",
    "Paragraph",
    "Table",
    "TableRow",
    "InMemoryTemplateRepository",
    "flatten_line_items",
    "build_placeholders",
    "apply_placeholders",
    "render_document",
    # Lookups
    "LookupSource",
    "InMemoryLookup",
    "TableLookup",
    # Migration
    "MigrationResult",
    "build_key_rewrites",
    "collect_template_ids",
    "migrate_template",
    # Actions
    "FollowupAction",
    "FollowupOrchestrator",
    "FollowupResult",
    "DocumentRenderer",
    "InMemoryDocumentRenderer",
    "RenderedDocument",
    "MailSender",
    "OutgoingEmail",
    "RecordingMailSender",
    "GmailSender",
]
