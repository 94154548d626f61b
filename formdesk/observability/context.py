"""
Request context for log correlation.

API requests and CLI invocations run inside a RequestContext, which binds
a request id and, for CLI commands that target one form, its form key. The log
formatters read both so lines from the store, cache and follow-up layers can be
grouped per request and per form.
"""

import contextvars
import uuid

_request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)
_form_key_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("form_key", default=None)


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return _request_id_var.get()


def set_request_id(request_id: str) -> contextvars.Token:
    """Set the request ID in context. Returns token for reset."""
    return _request_id_var.set(request_id)


def get_form_key() -> str | None:
    """Form key bound for the current request, if any."""
    return _form_key_var.get()


def bind_form_key(form_key: str | None) -> contextvars.Token:
    return _form_key_var.set(form_key)


def generate_request_id(prefix: str = "req") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


class RequestContext:
    """
    Binds a request ID (and optionally a form key) for every log line inside the block.

    Usage:
        with RequestContext(form_key="orders") as ctx:
            store.upsert(schema, record)

        # CLI invocations use their own prefix:
        with RequestContext(prefix="cli"):
            ...
    """

    def __init__(self, request_id: str | None = None, form_key: str | None = None, prefix: str = "req"):
        self.request_id = request_id or generate_request_id(prefix)
        self.form_key = form_key
        self._tokens: list[tuple[contextvars.ContextVar, contextvars.Token]] = []

    def __enter__(self) -> "RequestContext":
        self._tokens.append((_request_id_var, set_request_id(self.request_id)))
        if self.form_key is not None:
            self._tokens.append((_form_key_var, bind_form_key(self.form_key)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
