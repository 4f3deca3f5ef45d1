"""Caller-side bounded retry.

The client never retries on its own: a failed poll, submission or batch is
reported as-is. Callers that want retries wrap a call explicitly::

    job = await retry_async(lambda: client.jobs.poll(ref), policy=RetryPolicy())

Decisions rest on structured error fields (``APIError.retryable``, reason
codes, ``TransportError``), never on message text.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

from strata.errors import APIError, Reason, TransportError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and optional jitter."""

    max_attempts: int = 3
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 8.0
    jitter: bool = True  # "full jitter" when enabled
    max_elapsed_s: float | None = 30.0

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 0")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")
        if self.max_elapsed_s is not None and self.max_elapsed_s < 0:
            raise ValueError("RetryPolicy.max_elapsed_s must be >= 0 or None")


def should_retry_api(exc: BaseException) -> bool:
    """Return True for failures worth retrying on idempotent calls.

    - Cancellation is never retried.
    - APIError is retried when the classifier marked it retryable.
    - TransportError (no response at all) is retried.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, APIError):
        return exc.retryable is True
    return isinstance(exc, TransportError)


def should_retry_submit(exc: BaseException) -> bool:
    """Return True when a job submission may be retried.

    Submissions carry a client-chosen job id, so a retry after an ambiguous
    failure cannot start a second job: the service answers ``duplicate``,
    which is never retried.
    """
    if isinstance(exc, APIError) and exc.kind is Reason.DUPLICATE:
        return False
    return should_retry_api(exc)


def _compute_backoff_delay(policy: RetryPolicy, *, retry_index: int) -> float:
    # retry_index starts at 1 for the first retry sleep.
    base = policy.initial_delay_s * (
        policy.backoff_multiplier ** max(0, retry_index - 1)
    )
    base = min(policy.max_delay_s, base)
    if base <= 0:
        return 0.0
    if not policy.jitter:
        return base
    return random.random() * base  # noqa: S311


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry_api,
) -> T:
    """Run an async factory with bounded retries."""
    start = time.monotonic()

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await factory()
        except Exception as exc:
            if not should_retry(exc) or attempt >= policy.max_attempts:
                raise

            delay = _compute_backoff_delay(policy, retry_index=attempt)
            if policy.max_elapsed_s is not None:
                remaining = policy.max_elapsed_s - (time.monotonic() - start)
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            logger.debug("attempt %d failed (%s); retrying in %.2fs", attempt, exc, delay)
            if delay > 0:
                await asyncio.sleep(delay)

    raise RuntimeError("retry_async exhausted without an exception")  # pragma: no cover
