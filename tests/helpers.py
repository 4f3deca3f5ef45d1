"""Test helpers: canned service responses.

Keep this file tiny and purpose-built: it exists so suites do not each grow
their own response-building code.
"""

from __future__ import annotations

import json
import re
from typing import Any

from strata.transport.base import TransportResponse

JSON_HEADERS = {"Content-Type": "application/json; charset=UTF-8"}

_REQUEST_LINE_RE = re.compile(rb"^(GET|POST|PATCH|PUT|DELETE) (\S+) HTTP/1\.1", re.M)


def json_response(payload: Any, status: int = 200) -> TransportResponse:
    body = b"" if payload is None else json.dumps(payload).encode("utf-8")
    return TransportResponse(status=status, headers=dict(JSON_HEADERS), body=body)


def error_payload(code: int, reason: str, message: str = "boom") -> dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "errors": [{"reason": reason, "message": message, "domain": "global"}],
        }
    }


def error_response(code: int, reason: str, message: str = "boom") -> TransportResponse:
    return json_response(error_payload(code, reason, message), status=code)


def batch_response(
    parts: list[tuple[int, Any]], *, boundary: str = "batch_resp"
) -> TransportResponse:
    """Build a ``multipart/mixed`` composite response, one part per entry."""
    chunks: list[bytes] = []
    for index, (status, payload) in enumerate(parts, start=1):
        body = b"" if payload is None else json.dumps(payload).encode("utf-8")
        phrase = "OK" if status < 300 else "Error"
        head = (
            f"--{boundary}\r\n"
            "Content-Type: application/http\r\n"
            f"Content-ID: <response-item-{index}>\r\n"
            "\r\n"
            f"HTTP/1.1 {status} {phrase}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n"
            "\r\n"
        )
        chunks.append(head.encode("utf-8") + body + b"\r\n")
    chunks.append(f"--{boundary}--\r\n".encode())
    return TransportResponse(
        status=200,
        headers={"Content-Type": f"multipart/mixed; boundary={boundary}"},
        body=b"".join(chunks),
    )


def job_payload(
    job_id: str,
    state: str,
    *,
    project_id: str = "proj",
    error: dict[str, Any] | None = None,
    configuration: dict[str, Any] | None = None,
) -> dict[str, Any]:
    status: dict[str, Any] = {"state": state}
    if error is not None:
        status["errorResult"] = error
        status["errors"] = [error]
    return {
        "kind": "bigquery#job",
        "id": f"{project_id}:{job_id}",
        "jobReference": {"projectId": project_id, "jobId": job_id},
        "configuration": configuration or {},
        "status": status,
    }


def request_lines(body: bytes | None) -> list[tuple[str, str]]:
    """``(method, target)`` of every sub-request framed in a composite body."""
    assert body is not None
    return [
        (m.group(1).decode(), m.group(2).decode()) for m in _REQUEST_LINE_RE.finditer(body)
    ]
