"""Strata: batched, job-aware client for a tabular cloud data warehouse.

Public API:
    - Client: datasets, tables, table data and jobs over JSON/HTTP
    - Client.batch(): send many calls as one composite exchange
    - Config: configuration dataclass
    - RetryPolicy / retry_async: opt-in, caller-side retries
"""

from __future__ import annotations

import logging

from strata.batch import ApiCall, BatchScope
from strata.client import UNSET, Client
from strata.config import Config
from strata.errors import (
    APIError,
    BatchAbortedError,
    BatchStateError,
    ConfigurationError,
    InternalError,
    JobFailedError,
    JobTimeoutError,
    MalformedResponseError,
    RateLimitError,
    Reason,
    StrataError,
    TransportError,
    is_not_found,
)
from strata.models import Job, JobReference, JobState, TableReference
from strata.retry import RetryPolicy, retry_async, should_retry_api, should_retry_submit

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("strata-warehouse")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("strata").addHandler(logging.NullHandler())

__all__ = [
    "UNSET",
    "APIError",
    "ApiCall",
    "BatchAbortedError",
    "BatchScope",
    "BatchStateError",
    "Client",
    "Config",
    "ConfigurationError",
    "InternalError",
    "Job",
    "JobFailedError",
    "JobReference",
    "JobState",
    "JobTimeoutError",
    "MalformedResponseError",
    "RateLimitError",
    "Reason",
    "RetryPolicy",
    "StrataError",
    "TableReference",
    "TransportError",
    "is_not_found",
    "retry_async",
    "should_retry_api",
    "should_retry_submit",
]
