"""httpx-backed transport."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from strata.multipart import encode_query
from strata.transport._errors import wrap_transport_error
from strata.transport.base import TransportResponse

if TYPE_CHECKING:
    from collections.abc import Mapping

    from strata.transport.base import TokenSource

logger = logging.getLogger(__name__)

USER_AGENT = "strata-warehouse"


class HttpxTransport:
    """Transport over a shared ``httpx.AsyncClient``.

    The bearer token is fetched from *token_source* for every call so that
    refreshing sources are honored without rebuilding the client.
    """

    def __init__(
        self,
        api_root: str,
        token_source: TokenSource,
        *,
        timeout_s: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_root = api_root.rstrip("/")
        self._token_source = token_source
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_s, headers={"User-Agent": USER_AGENT}
        )

    async def send(
        self,
        method: str,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        body: bytes | None = None,
        content_type: str | None = None,
    ) -> TransportResponse:
        url = self.api_root + path
        qs = encode_query(query)
        if qs:
            url = f"{url}?{qs}"

        try:
            token = await self._token_source.token()
            headers = {"Authorization": f"Bearer {token}"}
            if content_type is not None:
                headers["Content-Type"] = content_type
            logger.debug("%s %s", method, url)
            response = await self._client.request(
                method, url, content=body, headers=headers
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise wrap_transport_error(exc, method=method, path=path) from exc

        return TransportResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
