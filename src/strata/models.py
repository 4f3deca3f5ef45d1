"""Typed views of the job and resource payloads the client reasons about.

Only the fields the job lifecycle depends on are typed; everything else the
service returns is kept verbatim (``extra="allow"``) and stays reachable
through ``model_extra`` / ``model_dump(by_alias=True)``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from strata.errors import MalformedResponseError


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="allow",
    )


class JobState(str, Enum):
    """Job lifecycle states as reported by the service."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"


class JobReference(_WireModel):
    """Stable identifier of a submitted job."""

    project_id: str
    job_id: str
    location: str | None = None

    def to_wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def __str__(self) -> str:
        return f"{self.project_id}:{self.job_id}"


class TableReference(_WireModel):
    project_id: str
    dataset_id: str
    table_id: str

    def to_wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def __str__(self) -> str:
        return f"{self.project_id}:{self.dataset_id}.{self.table_id}"


class DatasetReference(_WireModel):
    project_id: str
    dataset_id: str


class ErrorProto(_WireModel):
    reason: str | None = None
    message: str | None = None
    location: str | None = None


class JobStatus(_WireModel):
    state: JobState
    error_result: ErrorProto | None = None
    errors: list[ErrorProto] = Field(default_factory=list)


class Job(_WireModel):
    """A job as last reported by the service.

    Instances are never advanced locally; a newer state always comes from a
    fresh fetch.
    """

    job_reference: JobReference
    status: JobStatus
    configuration: dict[str, Any] = Field(default_factory=dict)
    statistics: dict[str, Any] | None = None
    id: str | None = None
    self_link: str | None = None

    @property
    def state(self) -> JobState:
        return self.status.state

    @property
    def done(self) -> bool:
        return self.status.state is JobState.DONE

    @property
    def error_result(self) -> ErrorProto | None:
        return self.status.error_result

    @classmethod
    def from_response(cls, payload: Any) -> Job:
        """Validate a jobs.insert/get/cancel payload into a Job."""
        if isinstance(payload, dict) and "job" in payload and "jobReference" not in payload:
            # jobs.cancel wraps the job resource
            payload = payload["job"]
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"expected a job resource, got {type(payload).__name__}"
            )
        try:
            return cls.model_validate(payload)
        except ValueError as exc:
            raise MalformedResponseError(f"invalid job resource: {exc}") from exc
