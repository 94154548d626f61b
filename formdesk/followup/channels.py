"""
Follow-up output channels: rendered documents and outbound mail.

DocumentRenderer turns a rendered Document into a stored file (PDF in
production); MailSender delivers an OutgoingEmail. In-memory versions are
used by tests and local runs; GmailSender sends through the Gmail API using
a service account with domain-wide delegation.
"""

from __future__ import annotations

import base64
import logging
import re
import uuid
from dataclasses import dataclass, field
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from .. import config
from .documents import Document

logger = logging.getLogger(__name__)

GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.send"]

_ID_PARAM_RE = re.compile(r"[?&]id=([a-zA-Z0-9_-]+)")
_ID_PATH_RE = re.compile(r"/d/([a-zA-Z0-9_-]+)")
_BARE_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{10,}$")


def extract_file_id(url: str | None) -> str:
    """File id from a document URL (`?id=`, `/d/<id>`) or a bare id."""
    text = (url or "").strip()
    if not text:
        return ""
    match = _ID_PARAM_RE.search(text) or _ID_PATH_RE.search(text)
    if match:
        return match.group(1)
    return text if _BARE_ID_RE.match(text) else ""


# =============================================================================
# DOCUMENTS
# =============================================================================


@dataclass
class RenderedDocument:
    file_id: str
    url: str
    name: str
    content: bytes = b""
    mime_type: str = "application/pdf"
    folder: str | None = None


class DocumentRenderer(Protocol):
    def render(self, document: Document, name: str, folder: str | None = None) -> RenderedDocument: ...

    def find(self, file_id: str) -> RenderedDocument | None: ...

    def find_by_name(self, name: str, folder: str | None = None) -> RenderedDocument | None: ...

    def trash(self, file_id: str) -> None: ...


class InMemoryDocumentRenderer:
    """Stores the rendered plain text as the file content."""

    def __init__(self, base_url: str = "memory://documents"):
        self.base_url = base_url.rstrip("/")
        self.files: dict[str, RenderedDocument] = {}
        self.trashed: dict[str, RenderedDocument] = {}

    def render(self, document: Document, name: str, folder: str | None = None) -> RenderedDocument:
        file_id = uuid.uuid4().hex
        rendered = RenderedDocument(
            file_id=file_id,
            url=f"{self.base_url}/d/{file_id}/view",
            name=name,
            content=document.plain_text.encode("utf-8"),
            folder=folder,
        )
        self.files[file_id] = rendered
        logger.info(f"Rendered {name} as {file_id}")
        return rendered

    def find(self, file_id: str) -> RenderedDocument | None:
        return self.files.get(file_id)

    def find_by_name(self, name: str, folder: str | None = None) -> RenderedDocument | None:
        for rendered in self.files.values():
            if rendered.name == name and (folder is None or rendered.folder == folder):
                return rendered
        return None

    def trash(self, file_id: str) -> None:
        rendered = self.files.pop(file_id, None)
        if rendered is not None:
            self.trashed[file_id] = rendered
            logger.info(f"Trashed {file_id}")


# =============================================================================
# MAIL
# =============================================================================


@dataclass
class OutgoingEmail:
    to: list[str]
    subject: str
    body: str
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    html_body: str | None = None
    attachments: list[RenderedDocument] = field(default_factory=list)


@dataclass
class MailResult:
    """Result of a send."""

    success: bool
    message_id: str | None = None
    data: dict | None = None
    error: str | None = None


class MailSender(Protocol):
    def send(self, email: OutgoingEmail) -> MailResult: ...


class RecordingMailSender:
    """Keeps every message instead of sending it. Set fail_with to simulate errors."""

    def __init__(self, fail_with: str | None = None):
        self.sent: list[OutgoingEmail] = []
        self.fail_with = fail_with

    def send(self, email: OutgoingEmail) -> MailResult:
        if self.fail_with:
            return MailResult(success=False, error=self.fail_with)
        self.sent.append(email)
        return MailResult(success=True, message_id=f"msg_{len(self.sent)}")


class GmailSender:
    """Send follow-up email through the Gmail API."""

    def __init__(
        self,
        credentials_path: str | None = None,
        delegated_user: str | None = None,
        dry_run: bool = False,
    ):
        self.credentials_path = credentials_path or config.SERVICE_ACCOUNT_FILE
        self.delegated_user = delegated_user or config.MAIL_DELEGATED_USER
        self.dry_run = dry_run
        self._service = None

    def _get_service(self):
        """Get Gmail API service using service account."""
        if self._service:
            return self._service

        try:
            from google.oauth2 import service_account
            from googleapiclient.discovery import build

            creds = service_account.Credentials.from_service_account_file(
                self.credentials_path, scopes=GMAIL_SCOPES
            )
            if self.delegated_user:
                creds = creds.with_subject(self.delegated_user)
            self._service = build("gmail", "v1", credentials=creds)
            return self._service
        except (ValueError, OSError, KeyError) as e:
            logger.error(f"Failed to get Gmail service: {e}")
            raise

    def _create_message(self, email: OutgoingEmail) -> str:
        """Build the MIME message and return it base64url-encoded."""
        msg = MIMEMultipart("mixed")
        msg["To"] = ", ".join(email.to)
        msg["Subject"] = email.subject
        if email.cc:
            msg["Cc"] = ", ".join(email.cc)
        if email.bcc:
            msg["Bcc"] = ", ".join(email.bcc)

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(email.body, "plain"))
        if email.html_body:
            body.attach(MIMEText(email.html_body, "html"))
        msg.attach(body)

        for attachment in email.attachments:
            subtype = attachment.mime_type.split("/", 1)[-1]
            part = MIMEApplication(attachment.content, _subtype=subtype)
            part.add_header("Content-Disposition", "attachment", filename=attachment.name)
            msg.attach(part)

        return base64.urlsafe_b64encode(msg.as_bytes()).decode("utf-8")

    def send(self, email: OutgoingEmail) -> MailResult:
        try:
            raw_message = self._create_message(email)

            if self.dry_run:
                return MailResult(
                    success=True,
                    message_id="msg_dry_run",
                    data={"dry_run": True, "to": email.to, "subject": email.subject},
                )

            service = self._get_service()
            result = service.users().messages().send(userId="me", body={"raw": raw_message}).execute()

            message_id = result.get("id")
            logger.info(f"Sent email to {len(email.to)} recipient(s): {email.subject}")
            return MailResult(success=True, message_id=message_id, data=result)

        except Exception as e:
            logger.error(f"Failed to send email ({type(e).__name__})")
            return MailResult(success=False, error=f"Failed to send email: {e}")
