"""Exception hierarchy for Strata."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

    from strata.models import Job, JobReference


class Reason(str, Enum):
    """Reason codes the client branches on.

    The service may introduce new reasons at any time, so ``APIError.reason``
    always keeps the raw string; this enum is only the recognized subset.
    """

    NOT_FOUND = "notFound"
    INVALID = "invalid"
    INVALID_QUERY = "invalidQuery"
    STOPPED = "stopped"
    DUPLICATE = "duplicate"
    INTERNAL = "internal"
    BACKEND_ERROR = "backendError"
    RATE_LIMIT_EXCEEDED = "rateLimitExceeded"
    QUOTA_EXCEEDED = "quotaExceeded"
    ACCESS_DENIED = "accessDenied"
    RESPONSE_TOO_LARGE = "responseTooLarge"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def from_raw(cls, raw: str) -> Reason:
        """Map a raw reason string to a recognized member."""
        try:
            return cls(raw)
        except ValueError:
            return cls.UNRECOGNIZED


class StrataError(Exception):
    """Base exception for all Strata errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(StrataError):
    """Configuration validation or resolution failed."""


class InternalError(StrataError):
    """A Strata internal error (bug) or invariant violation."""


class TransportError(StrataError):
    """The request never produced an HTTP response (DNS, TLS, connection, auth)."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        method: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.method = method
        self.path = path


class MalformedResponseError(StrataError):
    """A composite or page response could not be parsed into its expected shape."""


class BatchStateError(StrataError):
    """Programmer error: a nested scope, or a wait or upload inside a scope."""


class BatchAbortedError(StrataError):
    """The batch scope body raised, so the queued call was never sent."""


class JobTimeoutError(StrataError):
    """The client stopped waiting for a job; the job itself keeps running."""

    def __init__(
        self,
        message: str,
        *,
        reference: JobReference,
        last_state: str | None = None,
        timeout_s: float | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.reference = reference
        self.last_state = last_state
        self.timeout_s = timeout_s


class APIError(StrataError):
    """The service rejected a call or reported a failure condition.

    ``reason`` is the machine-readable code used for branching; ``message``
    is free text for diagnostics and must not be parsed.
    """

    def __init__(
        self,
        message: str,
        *,
        reason: str,
        path: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
        hint: str | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.message = message
        self.reason = reason
        self.path = path
        self.status_code = status_code
        self.retryable = retryable
        self.details = details or []

    @property
    def kind(self) -> Reason:
        """Recognized reason, or ``Reason.UNRECOGNIZED``."""
        return Reason.from_raw(self.reason)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(reason={self.reason!r}, "
            f"status_code={self.status_code!r}, message={self.message!r})"
        )


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429 or ``rateLimitExceeded``)."""


class JobFailedError(APIError):
    """A job reached DONE carrying a job-level error result."""

    def __init__(self, message: str, *, job: Job, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.job = job


def is_not_found(exc: BaseException) -> bool:
    """Return True when *exc* is an API error meaning "resource absent"."""
    return isinstance(exc, APIError) and exc.kind is Reason.NOT_FOUND


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
