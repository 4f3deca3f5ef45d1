"""Map low-level HTTP client failures into TransportError.

Only failures that never produced an HTTP response belong here; responses
with error statuses are classified by ``strata.classify``.
"""

from __future__ import annotations

import asyncio

import httpx

from strata.errors import StrataError, TransportError, _walk_exception_chain


def _hint_for(exc: BaseException) -> str | None:
    for e in _walk_exception_chain(exc):
        if isinstance(e, httpx.TimeoutException):
            return "Increase Config.timeout_s or retry the call."
        if isinstance(e, httpx.ConnectError):
            return "Check network access to Config.api_root."
    return None


def wrap_transport_error(
    exc: BaseException,
    *,
    method: str,
    path: str,
    message: str | None = None,
) -> TransportError:
    """Wrap *exc* into a TransportError carrying the request identity."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, TransportError):
        if exc.method is None:
            exc.method = method
        if exc.path is None:
            exc.path = path
        return exc

    cause = str(exc) or type(exc).__name__
    msg = message or f"{method} {path} failed"
    hint = exc.hint if isinstance(exc, StrataError) else _hint_for(exc)
    return TransportError(f"{msg}: {cause}", hint=hint, method=method, path=path)
