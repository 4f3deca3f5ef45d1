"""Typed job views and the exception hierarchy."""

from __future__ import annotations

import pytest

from strata.errors import (
    APIError,
    JobFailedError,
    MalformedResponseError,
    RateLimitError,
    Reason,
    StrataError,
    TransportError,
    _walk_exception_chain,
)
from strata.models import Job, JobReference, JobState
from tests.helpers import job_payload

pytestmark = pytest.mark.unit


def test_job_from_insert_payload() -> None:
    job = Job.from_response(job_payload("j1", "RUNNING", configuration={"query": {}}))

    assert job.job_reference == JobReference(project_id="proj", job_id="j1")
    assert job.state is JobState.RUNNING
    assert job.done is False
    assert job.error_result is None
    assert job.configuration == {"query": {}}
    assert str(job.job_reference) == "proj:j1"


def test_job_keeps_unmodelled_fields() -> None:
    job = Job.from_response(job_payload("j1", "DONE"))

    assert job.model_dump(by_alias=True)["kind"] == "bigquery#job"


def test_job_from_cancel_wrapper() -> None:
    job = Job.from_response({"kind": "x", "job": job_payload("j2", "PENDING")})

    assert job.job_reference.job_id == "j2"


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {"status": {"state": "DONE"}},
        {"jobReference": {"projectId": "p", "jobId": "j"}},
        job_payload("j", "EXPLODED"),
    ],
)
def test_invalid_job_payload_is_malformed(payload: object) -> None:
    with pytest.raises(MalformedResponseError):
        Job.from_response(payload)


def test_reference_to_wire_uses_service_names() -> None:
    ref = JobReference(project_id="p", job_id="j", location="EU")

    assert ref.to_wire() == {"projectId": "p", "jobId": "j", "location": "EU"}


def test_reason_from_raw_falls_back_to_unrecognized() -> None:
    assert Reason.from_raw("notFound") is Reason.NOT_FOUND
    assert Reason.from_raw("somethingNew") is Reason.UNRECOGNIZED


def test_error_hierarchy() -> None:
    job = Job.from_response(job_payload("j", "DONE"))

    assert issubclass(RateLimitError, APIError)
    assert isinstance(JobFailedError("x", job=job, reason="stopped"), APIError)
    assert issubclass(TransportError, StrataError)
    assert not issubclass(TransportError, APIError)


def test_api_error_repr_carries_reason() -> None:
    err = APIError("nope", reason="invalid", status_code=400)

    assert "reason='invalid'" in repr(err)
    assert err.details == []


def test_exception_chain_walk_stops_on_cycles() -> None:
    a = ValueError("a")
    b = RuntimeError("b")
    a.__cause__ = b
    b.__context__ = a

    assert list(_walk_exception_chain(a)) == [a, b]
