"""
Error taxonomy for FormDesk.

Public operations return result objects (see UpsertResult, FollowupResult,
MigrationResult). Exceptions are reserved for configuration problems and for
collaborator failures that a caller converts into a failure result.
"""


class FormDeskError(Exception):
    """Base class for all FormDesk errors."""

    pass


class ConfigurationError(FormDeskError):
    """Raised when a form definition or runtime setting is unusable."""

    pass


class NotFound(FormDeskError):
    """Raised when a form, record, schema or template does not exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class ExternalResourceFailure(FormDeskError):
    """A render or send collaborator reported failure. Never retried automatically."""

    pass


class ValidationConflict(FormDeskError):
    """A write was rejected by a dedup rule."""

    def __init__(self, message: str, rule_id: str | None = None, existing_record_id: str | None = None):
        self.message = message
        self.rule_id = rule_id
        self.existing_record_id = existing_record_id
        super().__init__(message)


class CacheUnavailable(FormDeskError):
    """The cache backend failed. Always swallowed by the cache layer."""

    pass
