import contextvars
from contextlib import contextmanager
import uuid

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)
session_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("session_id", default=None)
item_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("item_id", default=None)


def set_request_id(request_id: str) -> contextvars.Token:
    """Store the current request ID in a context variable."""
    return request_id_var.set(request_id)


def reset_request_id(token: contextvars.Token) -> None:
    """Reset the request ID context variable to a previous state."""
    request_id_var.reset(token)


def get_request_id() -> str | None:
    """Retrieve the current request ID from the context."""
    return request_id_var.get()


def _normalize_id(value: uuid.UUID | str | None) -> str | None:
    if value is None:
        return None
    return str(value)


def get_session_id() -> str | None:
    return session_id_var.get()


def get_item_id() -> str | None:
    return item_id_var.get()


@contextmanager
def log_context(
    session_id: uuid.UUID | str | None = None,
    item_id: str | None = None,
):
    """Temporarily scope session/item context for structured logs."""
    tokens: list[tuple[contextvars.ContextVar[str | None], contextvars.Token]] = []
    if session_id is not None:
        tokens.append((session_id_var, session_id_var.set(_normalize_id(session_id))))
    if item_id is not None:
        tokens.append((item_id_var, item_id_var.set(item_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
