"""
Component wiring.

build_services() assembles one store/orchestrator graph from explicit
collaborators (tests pass in-memory ones). get_services() is the process-wide
instance used by the API and CLI, built from the environment on first use.
"""

import logging
from dataclasses import dataclass

from . import config, paths
from .cache import CacheBackend, MemoryCacheBackend, StoreCache
from .config import Settings
from .config_store import FileTemplateRepository, FormRegistry
from .followup import (
    DocumentRenderer,
    FollowupOrchestrator,
    GmailSender,
    InMemoryDocumentRenderer,
    LookupSource,
    MailSender,
    RecordingMailSender,
    TableLookup,
)
from .followup.documents import TemplateRepository
from .observability import set_debug_enabled
from .properties import JsonPropertyStore, MemoryPropertyStore, PropertyStore
from .store import SubmissionStore
from .table import GoogleSheetsWorkbook, InMemoryWorkbook, Workbook

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    registry: FormRegistry
    workbook: Workbook
    store: SubmissionStore
    templates: TemplateRepository
    orchestrator: FollowupOrchestrator


def build_services(
    registry: FormRegistry,
    workbook: Workbook | None = None,
    templates: TemplateRepository | None = None,
    renderer: DocumentRenderer | None = None,
    mailer: MailSender | None = None,
    lookup: LookupSource | None = None,
    properties: PropertyStore | None = None,
    cache_backend: CacheBackend | None = None,
    settings: Settings | None = None,
) -> Services:
    settings = settings or Settings()
    set_debug_enabled(settings.debug)

    workbook = workbook or InMemoryWorkbook()
    properties = properties or MemoryPropertyStore()
    cache = StoreCache(cache_backend if cache_backend is not None else MemoryCacheBackend(), properties, settings)
    store = SubmissionStore(workbook, cache, properties, settings)
    templates = templates or FileTemplateRepository()
    orchestrator = FollowupOrchestrator(
        registry=registry,
        store=store,
        templates=templates,
        renderer=renderer or InMemoryDocumentRenderer(),
        mailer=mailer or RecordingMailSender(),
        lookup=lookup if lookup is not None else TableLookup(workbook),
        settings=settings,
    )
    return Services(
        settings=settings,
        registry=registry,
        workbook=workbook,
        store=store,
        templates=templates,
        orchestrator=orchestrator,
    )


def services_from_env() -> Services:
    settings = Settings.from_env()
    if config.SPREADSHEET_ID:
        workbook: Workbook = GoogleSheetsWorkbook()
    else:
        logger.warning("FORMDESK_SPREADSHEET_ID not set; using the in-memory workbook")
        workbook = InMemoryWorkbook()
    mailer: MailSender = GmailSender() if config.SERVICE_ACCOUNT_FILE else RecordingMailSender()
    return build_services(
        registry=FormRegistry.from_directory(),
        workbook=workbook,
        mailer=mailer,
        properties=JsonPropertyStore(paths.properties_path()),
        settings=settings,
    )


_services: Services | None = None


def get_services() -> Services:
    """Get or create the process-wide services."""
    global _services  # noqa: PLW0603
    if _services is None:
        _services = services_from_env()
    return _services


def set_services(services: Services | None) -> None:
    """Replace the process-wide services (None resets)."""
    global _services  # noqa: PLW0603
    _services = services
