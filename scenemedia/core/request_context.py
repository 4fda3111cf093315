"""Per-task identifiers attached to every structured log record."""

import contextvars
from contextlib import contextmanager

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)
script_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("script_id", default=None)
scene_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("scene_id", default=None)
job_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("job_id", default=None)

# Fields log_context may scope, in the order they appear in log lines.
_SCOPED_VARS = {
    "script_id": script_id_var,
    "scene_id": scene_id_var,
    "job_id": job_id_var,
}


def set_request_id(request_id: str) -> contextvars.Token:
    return request_id_var.set(request_id)


def reset_request_id(token: contextvars.Token) -> None:
    request_id_var.reset(token)


def get_request_id() -> str | None:
    return request_id_var.get()


def current_log_context() -> dict[str, str | None]:
    """Snapshot of the scoped identifiers; unset ones are ``None``."""
    return {name: var.get() for name, var in _SCOPED_VARS.items()}


@contextmanager
def log_context(**ids: object | None):
    """Scope ``script_id``/``scene_id``/``job_id`` for structured logs.

    ``None`` values leave the enclosing scope's value in place.
    """
    unknown = set(ids) - set(_SCOPED_VARS)
    if unknown:
        raise TypeError(f"unknown log context fields: {', '.join(sorted(unknown))}")
    tokens = [
        (_SCOPED_VARS[name], _SCOPED_VARS[name].set(str(value)))
        for name, value in ids.items()
        if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
