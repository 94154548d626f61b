"""
Test configuration: repo root on sys.path, isolated app home, shared fixtures.

Every test runs against in-memory collaborators (workbook, cache backend,
properties, templates, renderer, mail). FORMDESK_HOME points at a temporary
directory so nothing touches the real config or data dirs.
"""

import sys
from pathlib import Path

import pytest

# Add repo root to sys.path so tests can import formdesk.*, api.*, cli.*
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from formdesk.cache import MemoryCacheBackend, StoreCache  # noqa: E402
from formdesk.config import Settings  # noqa: E402
from formdesk.config_store import FormDefinition, FormRegistry  # noqa: E402
from formdesk.followup import (  # noqa: E402
    InMemoryDocumentRenderer,
    InMemoryLookup,
    InMemoryTemplateRepository,
    RecordingMailSender,
)
from formdesk.models import FormSchema, Record  # noqa: E402
from formdesk.observability import set_debug_enabled  # noqa: E402
from formdesk.properties import MemoryPropertyStore  # noqa: E402
from formdesk.services import build_services, set_services  # noqa: E402
from formdesk.store import SubmissionStore  # noqa: E402
from formdesk.table import InMemoryWorkbook  # noqa: E402
from tests.factories import (  # noqa: E402
    FORM_KEY,
    MEALS,
    TickingClock,
    make_dedup_rules,
    make_followup,
    make_schema,
    make_templates,
    sample_values,
)

# =============================================================================
# ISOLATION
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point FORMDESK_HOME at a temp dir and reset process-wide state."""
    monkeypatch.setenv("FORMDESK_HOME", str(tmp_path / "home"))
    set_services(None)
    set_debug_enabled(False)
    yield tmp_path / "home"
    set_services(None)
    set_debug_enabled(False)


# =============================================================================
# SCHEMA AND RECORDS
# =============================================================================


@pytest.fixture
def schema() -> FormSchema:
    return make_schema()


@pytest.fixture
def sample_record() -> Record:
    return Record(
        id="rec-1",
        form_key=FORM_KEY,
        language="EN",
        values=sample_values(ORDER_NO="ORD-0007"),
        created_at="2024-03-01T09:00:00+00:00",
        updated_at="2024-03-01T09:00:00+00:00",
    )


# =============================================================================
# STORE
# =============================================================================


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def properties() -> MemoryPropertyStore:
    return MemoryPropertyStore()


@pytest.fixture
def cache_backend() -> MemoryCacheBackend:
    return MemoryCacheBackend()


@pytest.fixture
def workbook() -> InMemoryWorkbook:
    return InMemoryWorkbook()


@pytest.fixture
def store(workbook, cache_backend, properties, settings, clock) -> SubmissionStore:
    cache = StoreCache(cache_backend, properties, settings)
    return SubmissionStore(workbook, cache, properties, settings, clock=clock)


# =============================================================================
# FOLLOW-UP
# =============================================================================


@pytest.fixture
def lookup() -> InMemoryLookup:
    return InMemoryLookup({"Meals": MEALS})


@pytest.fixture
def templates() -> InMemoryTemplateRepository:
    return InMemoryTemplateRepository(make_templates())


@pytest.fixture
def renderer() -> InMemoryDocumentRenderer:
    return InMemoryDocumentRenderer()


@pytest.fixture
def mailer() -> RecordingMailSender:
    return RecordingMailSender()


@pytest.fixture
def definition(schema) -> FormDefinition:
    return FormDefinition(schema=schema, dedup_rules=make_dedup_rules(), followup=make_followup())


@pytest.fixture
def services(definition, workbook, templates, renderer, mailer, lookup, properties, cache_backend, settings):
    svc = build_services(
        registry=FormRegistry([definition]),
        workbook=workbook,
        templates=templates,
        renderer=renderer,
        mailer=mailer,
        lookup=lookup,
        properties=properties,
        cache_backend=cache_backend,
        settings=settings,
    )
    set_services(svc)
    return svc


@pytest.fixture
def saved_record(services, definition) -> Record:
    """A stored EN record, written through the services' store."""
    result = services.store.upsert(definition.schema, Record(language="EN", values=sample_values()))
    assert result.success
    return result.record
