"""Job lifecycle: submission, polling, bounded waiting and cancellation.

Jobs move PENDING → RUNNING → DONE on the service; this module never infers a
transition locally. Every ``Job`` it returns is the service's answer to one
fetch. Cancellation is advisory: the service may still answer PENDING (or
DONE) right after a cancel request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any
from urllib.parse import quote
import uuid

from strata.batch import ApiCall
from strata.classify import job_error
from strata.errors import JobFailedError, JobTimeoutError, Reason
from strata.models import Job, JobReference
from strata.pagination import DEFAULT_MAX_PAGES, list_all, page_from_response

if TYPE_CHECKING:
    from collections.abc import Mapping

    from strata.batch import Dispatcher, ResultCallback
    from strata.pagination import Page

logger = logging.getLogger(__name__)

_RETRYABLE_JOB_REASONS = frozenset({Reason.BACKEND_ERROR.value, Reason.INTERNAL.value})

#: Default ceiling for blocking job waits, in seconds.
DEFAULT_WAIT_TIMEOUT_S = 600.0


def raise_for_job(job: Job) -> Job:
    """Return *job* unless it finished with a job-level error.

    Raises:
        JobFailedError: carrying the service's reason verbatim (``stopped``
            for a cancelled job).
    """
    error = job.error_result
    if not job.done or error is None:
        return job
    path = str(job.job_reference)
    reason, message = job_error(error.model_dump(exclude_none=True), path=path)
    raise JobFailedError(
        message,
        job=job,
        reason=reason,
        path=path,
        retryable=reason in _RETRYABLE_JOB_REASONS,
        details=[e.model_dump(exclude_none=True) for e in job.status.errors],
    )


class JobController:
    """Submits, polls, waits on and cancels jobs for one default project."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        project_id: str,
        *,
        service_path: str,
        poll_interval_s: float = 1.0,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> None:
        self._dispatcher = dispatcher
        self.project_id = project_id
        self._service_path = service_path
        self.poll_interval_s = poll_interval_s
        self._max_pages = max_pages

    def _jobs_path(self, project_id: str) -> str:
        return f"{self._service_path}/projects/{quote(project_id, safe='')}/jobs"

    def _job_path(self, ref: JobReference) -> str:
        return f"{self._jobs_path(ref.project_id)}/{quote(ref.job_id, safe='')}"

    def reference(
        self,
        job_id: str | None = None,
        *,
        project_id: str | None = None,
        location: str | None = None,
    ) -> JobReference:
        """Build a reference; a fresh UUID4 job id is used when none is given."""
        return JobReference(
            project_id=project_id or self.project_id,
            job_id=job_id or str(uuid.uuid4()),
            location=location,
        )

    def _coerce(self, reference: JobReference | str) -> JobReference:
        if isinstance(reference, JobReference):
            return reference
        return self.reference(reference)

    async def insert(
        self,
        configuration: Mapping[str, Any],
        *,
        job_id: str | None = None,
        project_id: str | None = None,
        location: str | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Submit a job and return the service's view of it (not waiting)."""
        ref = self.reference(job_id, project_id=project_id, location=location)
        call = ApiCall(
            "POST",
            self._jobs_path(ref.project_id),
            body={"jobReference": ref.to_wire(), "configuration": dict(configuration)},
            callback=callback,
            transform=Job.from_response,
        )
        logger.debug("submitting job %s", ref)
        return await self._dispatcher.execute(call)

    async def submit(
        self,
        configuration: Mapping[str, Any],
        *,
        job_id: str | None = None,
        project_id: str | None = None,
        location: str | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Submit a job and return its JobReference as soon as it is accepted."""
        ref = self.reference(job_id, project_id=project_id, location=location)
        call = ApiCall(
            "POST",
            self._jobs_path(ref.project_id),
            body={"jobReference": ref.to_wire(), "configuration": dict(configuration)},
            callback=callback,
            transform=lambda payload: Job.from_response(payload).job_reference,
        )
        logger.debug("submitting job %s", ref)
        return await self._dispatcher.execute(call)

    async def poll(
        self,
        reference: JobReference | str,
        *,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Fetch the job's current status from the service."""
        ref = self._coerce(reference)
        call = ApiCall(
            "GET",
            self._job_path(ref),
            query={"location": ref.location},
            callback=callback,
            transform=Job.from_response,
        )
        return await self._dispatcher.execute(call)

    async def cancel(
        self,
        reference: JobReference | str,
        *,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Request cancellation; returns whatever state the service reports."""
        ref = self._coerce(reference)
        call = ApiCall(
            "POST",
            f"{self._job_path(ref)}/cancel",
            query={"location": ref.location},
            callback=callback,
            transform=Job.from_response,
        )
        logger.debug("cancel requested for job %s", ref)
        return await self._dispatcher.execute(call)

    async def wait_until_done(
        self,
        reference: JobReference | str,
        timeout_s: float,
        *,
        poll_interval_s: float | None = None,
    ) -> Job:
        """Poll until the job is DONE or *timeout_s* elapses.

        The interval is capped at a tenth of the timeout. Timing out leaves the
        job running on the service; the reference stays valid for later polls.

        Raises:
            JobTimeoutError: the deadline passed before DONE was observed.
            JobFailedError: the job finished with a job-level error.
        """
        self._dispatcher.require_direct("waiting for a job")
        if timeout_s < 0:
            raise ValueError("timeout_s must be >= 0")
        if poll_interval_s is None:
            poll_interval_s = self.poll_interval_s
        if poll_interval_s <= 0:
            raise ValueError(f"poll_interval_s must be > 0, got {poll_interval_s}")
        ref = self._coerce(reference)
        interval = min(poll_interval_s, timeout_s / 10)
        deadline = time.monotonic() + timeout_s
        polls = 0

        while True:
            job: Job = await self.poll(ref)
            polls += 1
            if job.done:
                logger.debug("job %s done after %d polls", ref, polls)
                return raise_for_job(job)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise JobTimeoutError(
                    f"job {ref} still {job.state.value} after {timeout_s}s",
                    reference=ref,
                    last_state=job.state.value,
                    timeout_s=timeout_s,
                    hint="The job keeps running; wait again or poll it later.",
                )
            delay = min(interval, remaining)
            logger.debug("job %s is %s; next poll in %.2fs", ref, job.state.value, delay)
            await asyncio.sleep(delay)

    async def list_jobs(
        self,
        *,
        project_id: str | None = None,
        all_users: bool = False,
        state_filter: str | None = None,
        max_results: int | None = None,
    ) -> list[Job]:
        """List jobs in a project, newest first, following every page."""
        path = self._jobs_path(project_id or self.project_id)

        async def fetch(token: str | None) -> Page:
            call = ApiCall(
                "GET",
                path,
                query={
                    "allUsers": all_users or None,
                    "stateFilter": state_filter,
                    "maxResults": max_results,
                    "projection": "full",
                    "pageToken": token,
                },
                transform=lambda payload: page_from_response(payload, "jobs"),
            )
            return await self._dispatcher.execute(call)

        self._dispatcher.require_direct("listing every page of jobs")
        items = await list_all(fetch, max_pages=self._max_pages)
        return [Job.from_response(item) for item in items]
