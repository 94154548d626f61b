"""
Centralized configuration for FormDesk.

All values that vary by deployment belong here.
Override via environment variables where marked.
"""

import os
from dataclasses import dataclass


def _env_flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# ============================================================
# Diagnostics
# ============================================================

DEBUG: bool = _env_flag("FORMDESK_DEBUG")
"""Emit debug events (render/send failure causes, cache misses). Off by default."""

LOG_LEVEL: str = os.environ.get("FORMDESK_LOG_LEVEL", "INFO")
"""Root log level used by configure_logging()."""

# ============================================================
# Submission store
# ============================================================

CACHE_TTL_SECONDS: int = int(os.environ.get("FORMDESK_CACHE_TTL", "300"))
"""TTL for cached list pages and records."""

CACHE_PREFIX: str = os.environ.get("FORMDESK_CACHE_PREFIX", "FD_CACHE")
"""Namespace prefix for every cache key; the store version is appended to it."""

MAX_SCAN_ROWS: int = int(os.environ.get("FORMDESK_MAX_SCAN_ROWS", "200"))
"""Safety bound on rows scanned (and counted) by list_page."""

MAX_PAGE_SIZE: int = int(os.environ.get("FORMDESK_MAX_PAGE_SIZE", "10"))
"""Upper bound on rows returned by one list_page call."""

# ============================================================
# Google integration
# ============================================================

SPREADSHEET_ID: str = os.environ.get("FORMDESK_SPREADSHEET_ID", "")
"""Backing spreadsheet. Empty means the in-memory workbook is used."""

SERVICE_ACCOUNT_FILE: str = os.environ.get("FORMDESK_SA_FILE", "")
"""Service account JSON used for Sheets and Gmail."""

MAIL_DELEGATED_USER: str = os.environ.get("FORMDESK_MAIL_USER", "")
"""Mailbox impersonated when sending follow-up email."""


@dataclass(frozen=True)
class Settings:
    """Runtime settings, built once and passed to each component."""

    debug: bool = False
    cache_ttl_seconds: int = 300
    cache_prefix: str = "FD_CACHE"
    max_scan_rows: int = 200
    max_page_size: int = 10

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            debug=DEBUG,
            cache_ttl_seconds=CACHE_TTL_SECONDS,
            cache_prefix=CACHE_PREFIX,
            max_scan_rows=MAX_SCAN_ROWS,
            max_page_size=MAX_PAGE_SIZE,
        )
