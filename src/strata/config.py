"""Configuration: Frozen Config resolved from arguments and the environment."""

from __future__ import annotations

from dataclasses import dataclass
import os

from dotenv import load_dotenv

from strata.errors import ConfigurationError
from strata.pagination import DEFAULT_MAX_PAGES

load_dotenv()

DEFAULT_API_ROOT = "https://bigquery.googleapis.com"
SERVICE_PATH = "/bigquery/v2"
BATCH_PATH = "/batch/bigquery/v2"
UPLOAD_PATH = "/upload/bigquery/v2"

_PROJECT_ENV = "STRATA_PROJECT_ID"
_TOKEN_ENV = "STRATA_ACCESS_TOKEN"
_API_ROOT_ENV = "STRATA_API_ROOT"


@dataclass(frozen=True)
class Config:
    """Immutable client configuration.

    ``project_id`` and ``access_token`` fall back to ``STRATA_PROJECT_ID`` and
    ``STRATA_ACCESS_TOKEN``. A token is not required when a transport is
    injected into the client directly.

    Example:
        config = Config(project_id="my-project")
        # token resolved from STRATA_ACCESS_TOKEN
    """

    project_id: str | None = None
    access_token: str | None = None
    api_root: str | None = None
    #: Per-request HTTP timeout.
    timeout_s: float = 60.0
    #: Upper bound for the interval between job polls.
    poll_interval_s: float = 1.0
    #: Defensive cap on pages followed by a single listing.
    max_pages: int = DEFAULT_MAX_PAGES

    def __post_init__(self) -> None:
        """Resolve environment fallbacks and validate."""
        if self.project_id is None:
            object.__setattr__(self, "project_id", os.environ.get(_PROJECT_ENV))
        if self.access_token is None:
            object.__setattr__(self, "access_token", os.environ.get(_TOKEN_ENV))
        if self.api_root is None:
            object.__setattr__(
                self, "api_root", os.environ.get(_API_ROOT_ENV) or DEFAULT_API_ROOT
            )

        if not self.project_id:
            raise ConfigurationError(
                "project_id is required",
                hint=f"Set {_PROJECT_ENV} or pass Config(project_id=...).",
            )
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="This is the per-request HTTP timeout in seconds.",
            )
        if self.poll_interval_s <= 0:
            raise ConfigurationError(
                f"poll_interval_s must be > 0, got {self.poll_interval_s}",
                hint="This controls how often job status is re-fetched while waiting.",
            )
        if self.max_pages < 1:
            raise ConfigurationError(
                f"max_pages must be ≥ 1, got {self.max_pages}",
                hint="This caps how many continuation tokens a listing follows.",
            )

    def require_token(self) -> str:
        """Return the access token or explain how to provide one."""
        if not self.access_token:
            raise ConfigurationError(
                "access token required for real API calls",
                hint=f"Set {_TOKEN_ENV}, pass Config(access_token=...), "
                "or give Client a transport.",
            )
        return self.access_token

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(project_id={self.project_id!r}, api_root={self.api_root!r}, "
            f"access_token={'[REDACTED]' if self.access_token else None})"
        )

    __repr__ = __str__
