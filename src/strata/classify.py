"""Map failed HTTP responses into structured APIError values.

The service reports failures inside a JSON envelope shaped like::

    {"error": {"code": 404, "message": "...", "errors": [{"reason": "notFound", ...}]}}

The first entry's ``reason`` wins. When the envelope is missing or unreadable,
the reason falls back to one derived from the HTTP status. Classification
never raises: a garbled error body still produces a best-effort APIError.
"""

from __future__ import annotations

import json
from typing import Any

from strata.errors import APIError, RateLimitError, Reason

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})

_RETRYABLE_REASONS: frozenset[str] = frozenset(
    {
        Reason.BACKEND_ERROR.value,
        Reason.INTERNAL.value,
        Reason.RATE_LIMIT_EXCEEDED.value,
    }
)

_MAX_RAW_MESSAGE = 500


def reason_for_status(status: int) -> str:
    """Fallback reason for a response whose body names none."""
    if status == 404:
        return Reason.NOT_FOUND.value
    if 400 <= status < 500:
        return Reason.INVALID.value
    return Reason.INTERNAL.value


def _decode_envelope(body: Any) -> dict[str, Any] | None:
    if isinstance(body, (bytes, bytearray)):
        try:
            body = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None
    elif isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return None
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    return error if isinstance(error, dict) else None


def _raw_text(body: Any) -> str:
    if isinstance(body, (bytes, bytearray)):
        text = bytes(body).decode("utf-8", errors="replace")
    elif isinstance(body, str):
        text = body
    elif body is None:
        text = ""
    else:
        text = str(body)
    return text.strip()[:_MAX_RAW_MESSAGE]


def classify_error(status: int, body: Any, *, path: str | None = None) -> APIError:
    """Build an APIError from a failed response.

    Args:
        status: HTTP status code of the failed response.
        body: Raw body bytes/str, or an already-decoded JSON value.
        path: Request path that produced the failure, for diagnostics.
    """
    envelope = _decode_envelope(body)

    reason: str | None = None
    message: str | None = None
    details: list[dict[str, Any]] = []

    if envelope is not None:
        entries = envelope.get("errors")
        if isinstance(entries, list):
            details = [e for e in entries if isinstance(e, dict)]
        first = details[0] if details else {}
        raw_reason = first.get("reason")
        if isinstance(raw_reason, str) and raw_reason:
            reason = raw_reason
        for candidate in (envelope.get("message"), first.get("message")):
            if isinstance(candidate, str) and candidate:
                message = candidate
                break

    if reason is None:
        reason = reason_for_status(status)
    if message is None:
        message = _raw_text(body) or f"HTTP {status}"

    retryable = reason in _RETRYABLE_REASONS or status in RETRYABLE_STATUS_CODES
    cls: type[APIError] = APIError
    if status == 429 or reason == Reason.RATE_LIMIT_EXCEEDED.value:
        cls = RateLimitError

    return cls(
        message,
        reason=reason,
        path=path,
        status_code=status,
        retryable=retryable,
        details=details,
    )


def job_error(error_result: dict[str, Any], *, path: str | None = None) -> tuple[str, str]:
    """Extract ``(reason, message)`` from a job's ``status.errorResult``."""
    raw_reason = error_result.get("reason")
    reason = raw_reason if isinstance(raw_reason, str) and raw_reason else None
    if reason is None:
        reason = Reason.INTERNAL.value
    raw_message = error_result.get("message")
    if isinstance(raw_message, str) and raw_message:
        message = raw_message
    else:
        subject = "job" if path is None else f"job {path}"
        message = f"{subject} failed ({reason})"
    return reason, message
