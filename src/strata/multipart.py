"""Composite request/response framing for batched calls.

A batch travels as one ``multipart/mixed`` body. Every part wraps a complete
HTTP/1.1 message (``Content-Type: application/http``): requests on the way
out, responses on the way back. Parts are correlated purely by position.

Media uploads use the sibling ``multipart/related`` framing: a JSON metadata
part followed by the raw payload.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode
import uuid

from strata.errors import MalformedResponseError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

CRLF = b"\r\n"
JSON_CONTENT_TYPE = "application/json; charset=UTF-8"

_BOUNDARY_RE = re.compile(r'boundary=(?:"([^"]+)"|([^;\s]+))', re.IGNORECASE)
_STATUS_LINE_RE = re.compile(rb"^HTTP/\d(?:\.\d)?\s+(\d{3})(?:\s+(.*))?$")
_CONTENT_LENGTH_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class PartRequest:
    """One sub-request as it is framed inside a composite body."""

    method: str
    path: str
    query: Mapping[str, Any] | None = None
    body: Any = None


@dataclass(frozen=True)
class PartResponse:
    """One sub-response split back out of a composite body."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def json(self) -> Any:
        """Decode the body as JSON; empty bodies decode to ``None``."""
        if not self.body.strip():
            return None
        return json.loads(self.body.decode("utf-8"))


def new_boundary(prefix: str = "strata") -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def encode_query(query: Mapping[str, Any] | None) -> str:
    """Render query parameters, dropping ``None`` and lowering booleans."""
    if not query:
        return ""
    pairs: list[tuple[str, str]] = []
    for key, value in query.items():
        if value is None:
            continue
        values = value if isinstance(value, (list, tuple)) else [value]
        for v in values:
            if isinstance(v, bool):
                v = "true" if v else "false"
            pairs.append((key, str(v)))
    return urlencode(pairs)


def _target(path: str, query: Mapping[str, Any] | None) -> str:
    qs = encode_query(query)
    return f"{path}?{qs}" if qs else path


def encode_batch(parts: Sequence[PartRequest], boundary: str) -> bytes:
    """Frame *parts*, in order, as one ``multipart/mixed`` body."""
    delimiter = b"--" + boundary.encode("ascii")
    chunks: list[bytes] = []
    for index, part in enumerate(parts, start=1):
        inner = [f"{part.method} {_target(part.path, part.query)} HTTP/1.1".encode()]
        payload = b""
        if part.body is not None:
            payload = json.dumps(part.body).encode("utf-8")
            inner.append(f"Content-Type: {JSON_CONTENT_TYPE}".encode())
            inner.append(f"Content-Length: {len(payload)}".encode())
        chunks.append(delimiter)
        chunks.append(b"Content-Type: application/http")
        chunks.append(b"Content-Transfer-Encoding: binary")
        chunks.append(f"Content-ID: <item-{index}>".encode())
        chunks.append(b"")
        chunks.extend(inner)
        chunks.append(b"")
        chunks.append(payload)
    chunks.append(delimiter + b"--")
    chunks.append(b"")
    return CRLF.join(chunks)


def boundary_from_content_type(content_type: str | None) -> str:
    if not content_type:
        raise MalformedResponseError("composite response has no Content-Type")
    match = _BOUNDARY_RE.search(content_type)
    if match is None:
        raise MalformedResponseError(
            f"composite response Content-Type has no boundary: {content_type!r}"
        )
    return match.group(1) or match.group(2)


def _split_head(block: bytes) -> tuple[bytes, bytes]:
    """Split headers from body at the first blank line, tolerating bare LF."""
    for sep in (b"\r\n\r\n", b"\n\n"):
        idx = block.find(sep)
        if idx != -1:
            return block[:idx], block[idx + len(sep) :]
    return block, b""


def _parse_headers(lines: Sequence[bytes]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for raw in lines:
        line = raw.decode("latin-1").strip()
        if not line or ":" not in line:
            continue
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return headers


def _parse_http_response(block: bytes, index: int) -> PartResponse:
    head, body = _split_head(block.lstrip(b"\r\n"))
    lines = head.splitlines()
    if not lines:
        raise MalformedResponseError(f"composite part {index} holds no HTTP response")
    match = _STATUS_LINE_RE.match(lines[0].strip())
    if match is None:
        raise MalformedResponseError(
            f"composite part {index} has an invalid status line: {lines[0][:80]!r}"
        )
    headers = _parse_headers(lines[1:])
    length = headers.get("content-length")
    if length is not None and _CONTENT_LENGTH_RE.fullmatch(length):
        body = body[: int(length)]
    return PartResponse(
        status=int(match.group(1)), headers=headers, body=body.strip(b"\r\n")
    )


def decode_batch(content_type: str | None, body: bytes) -> list[PartResponse]:
    """Split a ``multipart/mixed`` composite response into ordered parts.

    Raises:
        MalformedResponseError: missing or non-ASCII boundary, missing closing
            delimiter, or a part that does not wrap an HTTP response.
    """
    raw_boundary = boundary_from_content_type(content_type)
    try:
        boundary = raw_boundary.encode("ascii")
    except UnicodeEncodeError as exc:
        raise MalformedResponseError(
            f"composite response boundary is not ASCII: {raw_boundary!r}"
        ) from exc
    delimiter = b"--" + boundary
    closing = delimiter + b"--"

    end = body.find(closing)
    if end == -1:
        raise MalformedResponseError("composite response is missing its closing boundary")

    segments = body[:end].split(delimiter)
    # segments[0] is the preamble
    responses: list[PartResponse] = []
    for index, segment in enumerate(segments[1:], start=1):
        part_head, part_body = _split_head(segment.lstrip(b"\r\n"))
        part_headers = _parse_headers(part_head.splitlines())
        kind = part_headers.get("content-type", "application/http")
        if not kind.lower().startswith("application/http"):
            raise MalformedResponseError(
                f"composite part {index} has unexpected Content-Type {kind!r}"
            )
        responses.append(_parse_http_response(part_body, index))
    return responses


def encode_related(metadata: Any, media: bytes, media_type: str, boundary: str) -> bytes:
    """Frame a JSON metadata part and a media part as ``multipart/related``."""
    delimiter = b"--" + boundary.encode("ascii")
    return CRLF.join(
        [
            delimiter,
            f"Content-Type: {JSON_CONTENT_TYPE}".encode(),
            b"",
            json.dumps(metadata).encode("utf-8"),
            delimiter,
            f"Content-Type: {media_type}".encode(),
            b"",
            media,
            delimiter + b"--",
            b"",
        ]
    )
