from __future__ import annotations

import pytest

from strata.errors import (
    APIError,
    JobFailedError,
    JobTimeoutError,
    RateLimitError,
    Reason,
    StrataError,
)
from strata.models import Job, JobReference

pytestmark = pytest.mark.unit


def test_api_error_structured_metadata() -> None:
    err = APIError(
        "boom",
        reason="backendError",
        path="/bigquery/v2/projects/p/jobs",
        status_code=503,
        retryable=True,
        hint="do this",
        details=[{"reason": "backendError", "message": "boom"}],
    )

    assert str(err) == "boom"
    assert err.message == "boom"
    assert err.hint == "do this"
    assert err.reason == "backendError"
    assert err.kind is Reason.BACKEND_ERROR
    assert err.path == "/bigquery/v2/projects/p/jobs"
    assert err.status_code == 503
    assert err.retryable is True
    assert err.details == [{"reason": "backendError", "message": "boom"}]


def test_api_error_defaults_to_none() -> None:
    err = APIError("fail", reason="invalid")
    assert err.hint is None
    assert err.path is None
    assert err.status_code is None
    assert err.retryable is None
    assert err.details == []


def test_unknown_reason_keeps_raw_string() -> None:
    err = APIError("new", reason="somethingNew")

    assert err.reason == "somethingNew"
    assert err.kind is Reason.UNRECOGNIZED


def test_repr_carries_reason_and_status() -> None:
    err = APIError("Not found: Table p:d.t", reason="notFound", status_code=404)

    assert repr(err) == (
        "APIError(reason='notFound', status_code=404, "
        "message='Not found: Table p:d.t')"
    )


def test_subclass_hierarchy() -> None:
    """RateLimitError and JobFailedError are catchable as APIError and StrataError."""
    job = Job.model_validate(
        {
            "jobReference": {"projectId": "p", "jobId": "j"},
            "status": {"state": "DONE"},
        }
    )
    rate_err = RateLimitError("slow down", reason="rateLimitExceeded", retryable=True)
    job_err = JobFailedError("bad sql", reason="invalidQuery", job=job)

    assert isinstance(rate_err, APIError)
    assert isinstance(rate_err, StrataError)
    assert isinstance(job_err, APIError)
    assert isinstance(job_err, StrataError)
    assert job_err.job is job


def test_job_timeout_error_keeps_reference() -> None:
    ref = JobReference(project_id="p", job_id="j")

    err = JobTimeoutError("gave up", reference=ref, last_state="RUNNING", timeout_s=5)

    assert isinstance(err, StrataError)
    assert not isinstance(err, APIError)
    assert err.reference is ref
    assert (err.last_state, err.timeout_s) == ("RUNNING", 5)
