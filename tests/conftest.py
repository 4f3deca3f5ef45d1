"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, a scripted transport
double and automatic API test skipping. Fixtures marked autouse apply to
every test unless a marker opts out.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import json
import logging
import os
from typing import Any

import pytest

from strata.client import Client
from strata.config import Config
from strata.transport.base import TransportResponse

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass(frozen=True)
class SentRequest:
    """One request as the transport saw it."""

    method: str
    path: str
    query: dict[str, Any]
    body: bytes | None
    content_type: str | None

    def json(self) -> Any:
        assert self.body is not None
        return json.loads(self.body.decode("utf-8"))


@dataclass
class FakeTransport:
    """Transport test double returning a scripted sequence of responses.

    Items in ``script`` are consumed in order; exceptions are raised instead of
    returned. Once the script is exhausted ``default`` is returned, or the
    request fails the test when no default is set.
    """

    script: list[TransportResponse | BaseException] = field(default_factory=list)
    default: TransportResponse | None = None
    requests: list[SentRequest] = field(default_factory=list)
    closed: bool = False

    async def send(
        self,
        method: str,
        path: str,
        *,
        query: Any = None,
        body: bytes | None = None,
        content_type: str | None = None,
    ) -> TransportResponse:
        self.requests.append(
            SentRequest(method, path, dict(query or {}), body, content_type)
        )
        if self.script:
            item = self.script.pop(0)
        elif self.default is not None:
            item = self.default
        else:
            raise AssertionError(f"unexpected request: {method} {path}")
        if isinstance(item, BaseException):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def client(transport: FakeTransport) -> Client:
    """Client over the fake transport with a fast poll interval."""
    return Client(Config(project_id="proj", poll_interval_s=0.001), transport=transport)


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_strata_env(request, monkeypatch):
    """Ensure a clean STRATA_* environment for each test.

    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith("STRATA_"):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# API Test Configuration
# =============================================================================


@pytest.fixture
def live_config() -> Config:
    """Return a Config from STRATA_* variables or skip the test."""
    if not os.getenv("STRATA_PROJECT_ID") or not os.getenv("STRATA_ACCESS_TOKEN"):
        pytest.skip("STRATA_PROJECT_ID and STRATA_ACCESS_TOKEN not set")
    return Config()
