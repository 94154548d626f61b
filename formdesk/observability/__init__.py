"""
Observability module: structured logging, request IDs, debug events.

Usage:
    from formdesk.observability import get_logger, RequestContext, debug_log

    logger = get_logger(__name__)
    logger.info("Listing records", extra={"form_key": "intake"})

    with RequestContext() as ctx:
        logger.info("Request started", extra={"request_id": ctx.request_id})

    debug_log("cache.miss", key=key)  # emitted only when Settings.debug is on
"""

from .context import (
    RequestContext,
    bind_form_key,
    generate_request_id,
    get_form_key,
    get_request_id,
    set_request_id,
)
from .logging import (
    CorrelationIdMiddleware,
    HumanFormatter,
    JSONFormatter,
    configure_logging,
    debug_log,
    get_logger,
    is_debug_enabled,
    set_debug_enabled,
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "JSONFormatter",
    "HumanFormatter",
    "CorrelationIdMiddleware",
    # Debug channel
    "debug_log",
    "set_debug_enabled",
    "is_debug_enabled",
    # Context
    "RequestContext",
    "bind_form_key",
    "get_form_key",
    "generate_request_id",
    "get_request_id",
    "set_request_id",
]
