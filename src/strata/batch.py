"""Call dispatch and request batching.

Every facade operation becomes an :class:`ApiCall` handed to a
:class:`Dispatcher`. Outside a batch scope the call is sent at once. Inside
``async with dispatcher.batch():`` it is queued instead, and on scope exit all
queued calls travel as one composite exchange whose parts are matched back to
their calls by position.

Delivery contract:
- every call is delivered exactly once, as ``(result, None)`` or
  ``(None, error)``;
- a composite failure (transport error, failed composite status, unparsable
  framing) delivers the same error to every queued call;
- a scope whose body raises sends nothing and delivers ``BatchAbortedError``.

A scope belongs to one task. Populating the same scope from concurrent tasks
or threads is not synchronized and is the caller's responsibility.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import json
import logging
from typing import TYPE_CHECKING, Any

from strata.classify import classify_error
from strata.errors import (
    BatchAbortedError,
    BatchStateError,
    InternalError,
    MalformedResponseError,
    Reason,
    StrataError,
    TransportError,
)
from strata.multipart import (
    JSON_CONTENT_TYPE,
    PartRequest,
    decode_batch,
    encode_batch,
    new_boundary,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Mapping

    from strata.transport.base import Transport

logger = logging.getLogger(__name__)

#: Receives ``(result, None)`` or ``(None, error)`` exactly once per call.
ResultCallback = Callable[[Any, "BaseException | None"], None]


class _ResultSlot:
    """Single-fire holder for one call's outcome."""

    __slots__ = ("_delivered", "_error", "_value")

    def __init__(self) -> None:
        self._delivered = False
        self._value: Any = None
        self._error: BaseException | None = None

    def fill(self, value: Any, error: BaseException | None) -> None:
        if self._delivered:
            raise InternalError("call result delivered twice")
        if value is not None and error is not None:
            raise InternalError("call delivered both a result and an error")
        self._delivered = True
        self._value = value
        self._error = error


@dataclass(frozen=True, eq=False)
class ApiCall:
    """One logical API call.

    ``transform`` maps decoded JSON to the value handed to the caller.
    ``absent_ok`` turns a ``notFound`` failure into a ``None`` result.
    """

    method: str
    path: str
    query: Mapping[str, Any] | None = None
    body: Any = None
    callback: ResultCallback | None = None
    transform: Callable[[Any], Any] | None = None
    absent_ok: bool = False
    _slot: _ResultSlot = field(default_factory=_ResultSlot, repr=False)

    def done(self) -> bool:
        return self._slot._delivered

    def error(self) -> BaseException | None:
        self._require_done()
        return self._slot._error

    def result(self) -> Any:
        """Return the delivered value, or raise the delivered error."""
        self._require_done()
        if self._slot._error is not None:
            raise self._slot._error
        return self._slot._value

    def deliver(self, value: Any, error: BaseException | None) -> None:
        """Resolve the call; fires ``callback`` exactly once."""
        self._slot.fill(value, error)
        if self.callback is not None:
            self.callback(value, error)

    def _require_done(self) -> None:
        if not self._slot._delivered:
            raise BatchStateError(
                f"{self.method} {self.path} has not been delivered yet",
                hint="Batched results are available after the batch scope exits.",
            )


@dataclass
class BatchScope:
    """Calls queued while a batch scope is open, in enqueue order."""

    calls: list[ApiCall] = field(default_factory=list)

    def append(self, call: ApiCall) -> None:
        self.calls.append(call)

    def __len__(self) -> int:
        return len(self.calls)


def resolve_response(
    call: ApiCall, status: int, body: bytes
) -> tuple[Any, StrataError | None]:
    """Turn one (sub-)response into the ``(result, error)`` pair for *call*."""
    if not 200 <= status < 300:
        error = classify_error(status, body, path=call.path)
        if call.absent_ok and error.reason == Reason.NOT_FOUND.value:
            return None, None
        return None, error

    try:
        decoded = json.loads(body.decode("utf-8")) if body.strip() else None
    except (UnicodeDecodeError, ValueError) as exc:
        return None, MalformedResponseError(
            f"{call.method} {call.path} returned an unreadable body: {exc}"
        )

    if call.transform is None:
        return decoded, None
    try:
        return call.transform(decoded), None
    except StrataError as exc:
        return None, exc
    except Exception as exc:
        error = MalformedResponseError(
            f"{call.method} {call.path} returned an unusable payload: {exc!r}"
        )
        error.__cause__ = exc
        return None, error


def _deliver_all(outcomes: Iterable[tuple[ApiCall, Any, BaseException | None]]) -> None:
    """Deliver every outcome, then re-raise the first callback failure."""
    first_failure: BaseException | None = None
    for call, value, error in outcomes:
        try:
            call.deliver(value, error)
        except InternalError:
            raise
        except Exception as exc:
            if first_failure is None:
                first_failure = exc
    if first_failure is not None:
        raise first_failure


class Dispatcher:
    """Routes calls either straight to the transport or into the open batch."""

    def __init__(self, transport: Transport, *, batch_path: str) -> None:
        self._transport = transport
        self._batch_path = batch_path
        self._scope: BatchScope | None = None

    @property
    def in_batch(self) -> bool:
        return self._scope is not None

    def require_direct(self, operation: str) -> None:
        """Raise BatchStateError when *operation* is attempted inside a scope."""
        if self._scope is not None:
            raise BatchStateError(
                f"{operation} cannot run inside a batch scope",
                hint="Run it after the batch scope exits.",
            )

    async def execute(
        self,
        call: ApiCall,
        *,
        raw_body: bytes | None = None,
        content_type: str | None = None,
    ) -> Any:
        """Send *call* now, or queue it when a batch scope is open.

        Inside a scope the call itself is returned as a pending handle. Outside,
        the result is returned; errors are raised unless the call has a
        callback, which then receives them instead.
        """
        if self._scope is not None:
            if raw_body is not None:
                self.require_direct(f"{call.method} {call.path} (media upload)")
            self._scope.append(call)
            logger.debug("queued %s %s (#%d)", call.method, call.path, len(self._scope))
            return call

        if raw_body is None and call.body is not None:
            raw_body = json.dumps(call.body).encode("utf-8")
            content_type = JSON_CONTENT_TYPE

        try:
            response = await self._transport.send(
                call.method,
                call.path,
                query=call.query,
                body=raw_body,
                content_type=content_type,
            )
        except asyncio.CancelledError:
            raise
        except TransportError as exc:
            call.deliver(None, exc)
            if call.callback is None:
                raise
            return None

        value, error = resolve_response(call, response.status, response.body)
        call.deliver(value, error)
        if error is not None and call.callback is None:
            raise error
        return value

    @asynccontextmanager
    async def batch(self) -> AsyncIterator[BatchScope]:
        """Open a batch scope; queued calls are sent together on exit."""
        if self._scope is not None:
            raise BatchStateError(
                "a batch scope is already active",
                hint="Batch scopes do not nest; issue the calls in the open scope.",
            )
        scope = BatchScope()
        self._scope = scope
        try:
            try:
                yield scope
            except BaseException as exc:
                logger.debug("batch body raised; discarding %d queued calls", len(scope))
                aborted = BatchAbortedError("batch scope exited with an exception")
                aborted.__cause__ = exc
                try:
                    _deliver_all((c, None, aborted) for c in scope.calls)
                except Exception as cb_err:
                    # the body's exception stays the one the caller sees
                    logger.warning(
                        "callback failed while aborting batch: %s", cb_err, exc_info=cb_err
                    )
                raise
        finally:
            self._scope = None
            logger.debug("batch scope closed")

        await self._flush(scope.calls)

    async def _flush(self, calls: list[ApiCall]) -> None:
        if not calls:
            logger.debug("empty batch; nothing to send")
            return

        boundary = new_boundary("batch")
        payload = encode_batch(
            [PartRequest(c.method, c.path, c.query, c.body) for c in calls], boundary
        )
        logger.debug("sending batch of %d calls (%d bytes)", len(calls), len(payload))

        try:
            response = await self._transport.send(
                "POST",
                self._batch_path,
                body=payload,
                content_type=f"multipart/mixed; boundary={boundary}",
            )
            if not response.ok:
                raise classify_error(response.status, response.body, path=self._batch_path)
            parts = decode_batch(response.content_type, response.body)
            if len(parts) != len(calls):
                raise MalformedResponseError(
                    f"composite response carried {len(parts)} parts for {len(calls)} calls"
                )
        except asyncio.CancelledError as exc:
            aborted = BatchAbortedError("batch send was cancelled")
            aborted.__cause__ = exc
            _deliver_all((c, None, aborted) for c in calls)
            raise
        except StrataError as exc:
            logger.warning("batch of %d calls failed: %s", len(calls), exc)
            _deliver_all((c, None, exc) for c in calls)
            return

        outcomes = [
            (call, *resolve_response(call, part.status, part.body))
            for call, part in zip(calls, parts)
        ]
        _deliver_all(outcomes)
