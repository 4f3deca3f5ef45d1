"""Transport protocol: the minimal seam between the client core and HTTP."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True)
class TransportResponse:
    """Status, headers and raw body of one physical HTTP exchange."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str | None:
        for name, value in self.headers.items():
            if name.lower() == "content-type":
                return value
        return None

    def json(self) -> Any:
        """Decode the body as JSON; empty bodies decode to ``None``."""
        if not self.body.strip():
            return None
        return json.loads(self.body.decode("utf-8"))


@runtime_checkable
class Transport(Protocol):
    """Send one request, return its response or raise ``TransportError``.

    ``path`` is absolute on the API root (``/bigquery/v2/projects/...``).
    ``body`` is already encoded; ``content_type`` describes it.
    """

    async def send(
        self,
        method: str,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        body: bytes | None = None,
        content_type: str | None = None,
    ) -> TransportResponse:
        """Perform the exchange."""
        ...

    async def aclose(self) -> None:
        """Release connections."""
        ...


@runtime_checkable
class TokenSource(Protocol):
    """Supplies a bearer token for each outgoing call."""

    async def token(self) -> str:
        """Return a currently valid access token."""
        ...


@dataclass(frozen=True)
class StaticTokenSource:
    """Token source that always returns the same token."""

    access_token: str

    async def token(self) -> str:
        return self.access_token

    def __repr__(self) -> str:
        return "StaticTokenSource(access_token='[REDACTED]')"
