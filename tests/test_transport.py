"""httpx transport behavior, exercised through httpx.MockTransport."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from strata.client import Client
from strata.config import BATCH_PATH, Config
from strata.errors import TransportError
from strata.transport import HttpxTransport, StaticTokenSource, TransportResponse
from strata.transport._errors import wrap_transport_error
from tests.helpers import batch_response

pytestmark = pytest.mark.unit

ROOT = "https://warehouse.test"


def _transport(handler: Any) -> tuple[HttpxTransport, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpxTransport(ROOT + "/", StaticTokenSource("tok"), client=http), http


@pytest.mark.asyncio
async def test_send_adds_bearer_token_and_query() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    transport, http = _transport(handler)

    response = await transport.send(
        "POST",
        "/bigquery/v2/projects/p/jobs",
        query={"location": "EU", "dryRun": True, "pageToken": None},
        body=b'{"a": 1}',
        content_type="application/json",
    )

    assert isinstance(response, TransportResponse)
    assert response.ok
    assert response.json() == {"ok": True}
    [request] = seen
    assert request.headers["Authorization"] == "Bearer tok"
    assert request.headers["Content-Type"] == "application/json"
    expected = f"{ROOT}/bigquery/v2/projects/p/jobs?location=EU&dryRun=true"
    assert str(request.url) == expected
    assert json.loads(request.content) == {"a": 1}
    await http.aclose()


@pytest.mark.asyncio
async def test_error_statuses_are_returned_not_raised() -> None:
    transport, http = _transport(lambda request: httpx.Response(404, text="nope"))

    response = await transport.send("GET", "/x")

    assert response.status == 404
    assert response.ok is False
    assert response.body == b"nope"
    await http.aclose()


@pytest.mark.asyncio
async def test_connection_failure_becomes_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport, http = _transport(handler)

    with pytest.raises(TransportError) as exc:
        await transport.send("GET", "/projects")

    err = exc.value
    assert (err.method, err.path) == ("GET", "/projects")
    assert err.hint is not None
    assert "api_root" in err.hint
    assert isinstance(err.__cause__, httpx.ConnectError)
    await http.aclose()


@pytest.mark.asyncio
async def test_injected_client_is_not_closed() -> None:
    transport, http = _transport(lambda request: httpx.Response(200))

    await transport.aclose()

    assert http.is_closed is False
    await http.aclose()


def test_wrap_transport_error_keeps_existing_transport_errors() -> None:
    original = TransportError("already wrapped")

    wrapped = wrap_transport_error(original, method="GET", path="/p")

    assert wrapped is original
    assert (wrapped.method, wrapped.path) == ("GET", "/p")


def test_timeout_hint() -> None:
    err = wrap_transport_error(httpx.ReadTimeout("slow"), method="GET", path="/p")

    assert err.hint is not None
    assert "timeout_s" in err.hint


def test_token_source_repr_is_redacted() -> None:
    assert "s3cret" not in repr(StaticTokenSource("s3cret"))


@pytest.mark.asyncio
async def test_batch_round_trip_over_http() -> None:
    """A batch scope travels as one multipart POST and resolves every call."""
    requests: list[httpx.Request] = []
    canned = batch_response([(200, {"id": "one"}), (200, {"id": "two"})])

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, headers=dict(canned.headers), content=canned.body)

    transport, http = _transport(handler)
    client = Client(Config(project_id="p"), transport=transport)
    seen: list[Any] = []

    async with client.batch():
        await client.table("d", "one", callback=lambda r, e: seen.append(r))
        await client.table("d", "two", callback=lambda r, e: seen.append(r))

    assert seen == [{"id": "one"}, {"id": "two"}]
    [request] = requests
    assert request.url.path == BATCH_PATH
    assert request.headers["Content-Type"].startswith("multipart/mixed; boundary=")
    assert b"GET /bigquery/v2/projects/p/datasets/d/tables/one HTTP/1.1" in request.content
    await http.aclose()
