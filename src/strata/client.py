"""Resource-oriented client facade.

Every operation accepts an optional ``callback(result, error)``:

- outside a batch scope the operation returns its result (or raises); when a
  callback is given it receives the outcome instead of the error being raised;
- inside ``async with client.batch():`` the operation returns the pending
  :class:`~strata.batch.ApiCall` and the callback fires when the scope exits.

Lookups of a single dataset or table, and deletions, deliver ``None`` when the
resource does not exist.
"""

from __future__ import annotations

import logging
import time
from typing import IO, TYPE_CHECKING, Any
from urllib.parse import quote

from strata.batch import ApiCall, Dispatcher
from strata.config import BATCH_PATH, SERVICE_PATH, UPLOAD_PATH, Config
from strata.errors import ConfigurationError, StrataError
from strata.job_config import (
    copy_config,
    extract_config,
    load_config,
    normalize_schema,
    query_config,
    table_ref,
)
from strata.jobs import DEFAULT_WAIT_TIMEOUT_S, JobController
from strata.models import Job
from strata.multipart import encode_related, new_boundary
from strata.pagination import list_all, page_from_response
from strata.rows import schema_fields, tabledata_result
from strata.transport import HttpxTransport, StaticTokenSource

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from contextlib import AbstractAsyncContextManager
    from types import TracebackType

    from strata.batch import BatchScope, ResultCallback
    from strata.job_config import Priority
    from strata.pagination import Page
    from strata.transport import Transport

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "<unset>"


#: Marks a patch field that should be left untouched (``None`` clears it).
UNSET: Any = _Unset()


def _seg(value: str) -> str:
    return quote(value, safe="")


def _seconds_to_ms(value: float | None) -> str | None:
    return None if value is None else str(int(value * 1000))


def _media_bytes(file: bytes | str | IO[Any]) -> bytes:
    if isinstance(file, bytes):
        return file
    if isinstance(file, str):
        return file.encode("utf-8")
    data = file.read()
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


class Client:
    """Client for datasets, tables, table data and jobs.

    Example:
        async with Client(Config(project_id="my-project")) as client:
            async with client.batch():
                await client.table("samples", "shakespeare", callback=on_table)
                await client.query("SELECT 1", callback=on_job)
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        transport: Transport | None = None,
    ) -> None:
        self.config = config if config is not None else Config()
        if transport is None:
            transport = HttpxTransport(
                str(self.config.api_root),
                StaticTokenSource(self.config.require_token()),
                timeout_s=self.config.timeout_s,
            )
        self._transport = transport
        self._dispatcher = Dispatcher(transport, batch_path=BATCH_PATH)
        self.project_id: str = str(self.config.project_id)
        self.jobs = JobController(
            self._dispatcher,
            self.project_id,
            service_path=SERVICE_PATH,
            poll_interval_s=self.config.poll_interval_s,
            max_pages=self.config.max_pages,
        )

    # ------------------------------------------------------------------
    # Lifecycle and batching
    # ------------------------------------------------------------------

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            await self.aclose()
        except Exception as cleanup_exc:
            if exc is None:
                raise
            # Cleanup should never mask the primary failure.
            logger.warning("Transport cleanup failed: %s", cleanup_exc)

    async def aclose(self) -> None:
        await self._transport.aclose()

    def batch(self) -> AbstractAsyncContextManager[BatchScope]:
        """Open a batch scope: ``async with client.batch(): ...``."""
        return self._dispatcher.batch()

    @property
    def in_batch(self) -> bool:
        return self._dispatcher.in_batch

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _project_path(self, project_id: str | None) -> str:
        return f"{SERVICE_PATH}/projects/{_seg(project_id or self.project_id)}"

    def _dataset_path(self, dataset_id: str, project_id: str | None) -> str:
        return f"{self._project_path(project_id)}/datasets/{_seg(dataset_id)}"

    def _table_path(self, dataset_id: str, table_id: str, project_id: str | None) -> str:
        return f"{self._dataset_path(dataset_id, project_id)}/tables/{_seg(table_id)}"

    async def _call(self, call: ApiCall) -> Any:
        return await self._dispatcher.execute(call)

    async def _list(
        self,
        path: str,
        items_key: str,
        *,
        query: Mapping[str, Any] | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """List every item under *path*; inside a batch only the first page is queued."""
        base_query = dict(query or {})

        if self._dispatcher.in_batch:
            return await self._call(
                ApiCall(
                    "GET",
                    path,
                    query=base_query,
                    callback=callback,
                    transform=lambda p: page_from_response(p, items_key).items,
                )
            )

        async def fetch(token: str | None) -> Page:
            return await self._call(
                ApiCall(
                    "GET",
                    path,
                    query={**base_query, "pageToken": token},
                    transform=lambda p: page_from_response(p, items_key),
                )
            )

        try:
            items = await list_all(fetch, max_pages=self.config.max_pages)
        except StrataError as exc:
            if callback is None:
                raise
            callback(None, exc)
            return None
        if callback is not None:
            callback(items, None)
        return items

    async def _run_job(
        self,
        configuration: Mapping[str, Any],
        *,
        job_id: str | None,
        project_id: str | None,
        location: str | None,
        wait: float | None,
        callback: ResultCallback | None,
    ) -> Any:
        if wait is None:
            return await self.jobs.insert(
                configuration,
                job_id=job_id,
                project_id=project_id,
                location=location,
                callback=callback,
            )

        self._dispatcher.require_direct("submitting a job with wait=")
        try:
            job = await self.jobs.insert(
                configuration, job_id=job_id, project_id=project_id, location=location
            )
            job = await self.jobs.wait_until_done(job.job_reference, wait)
        except StrataError as exc:
            if callback is None:
                raise
            callback(None, exc)
            return None
        if callback is not None:
            callback(job, None)
        return job

    # ------------------------------------------------------------------
    # Projects and datasets
    # ------------------------------------------------------------------

    async def projects(self, *, callback: ResultCallback | None = None) -> Any:
        return await self._list(f"{SERVICE_PATH}/projects", "projects", callback=callback)

    async def datasets(
        self,
        *,
        project_id: str | None = None,
        all: bool = False,  # noqa: A002
        callback: ResultCallback | None = None,
    ) -> Any:
        return await self._list(
            f"{self._project_path(project_id)}/datasets",
            "datasets",
            query={"all": all or None},
            callback=callback,
        )

    async def dataset(
        self,
        dataset_id: str,
        *,
        project_id: str | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Fetch a dataset resource, or ``None`` when it does not exist."""
        return await self._call(
            ApiCall(
                "GET",
                self._dataset_path(dataset_id, project_id),
                callback=callback,
                absent_ok=True,
            )
        )

    async def insert_dataset(
        self,
        dataset_id: str,
        *,
        project_id: str | None = None,
        location: str | None = None,
        description: str | None = None,
        friendly_name: str | None = None,
        default_table_expiration_ms: int | None = None,
        access: Sequence[Mapping[str, Any]] | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        body: dict[str, Any] = {
            "datasetReference": {
                "projectId": project_id or self.project_id,
                "datasetId": dataset_id,
            }
        }
        optional = {
            "location": location,
            "description": description,
            "friendlyName": friendly_name,
            "defaultTableExpirationMs": (
                str(default_table_expiration_ms)
                if default_table_expiration_ms is not None
                else None
            ),
            "access": [dict(a) for a in access] if access is not None else None,
        }
        body.update({k: v for k, v in optional.items() if v is not None})
        return await self._call(
            ApiCall(
                "POST",
                f"{self._project_path(project_id)}/datasets",
                body=body,
                callback=callback,
            )
        )

    async def patch_dataset(
        self,
        dataset_id: str,
        *,
        project_id: str | None = None,
        access: Any = UNSET,
        description: Any = UNSET,
        friendly_name: Any = UNSET,
        default_table_expiration_ms: Any = UNSET,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Patch dataset fields; pass ``None`` to clear a field."""
        fields = {
            "access": (
                [dict(a) for a in access] if isinstance(access, (list, tuple)) else access
            ),
            "description": description,
            "friendlyName": friendly_name,
            "defaultTableExpirationMs": (
                str(default_table_expiration_ms)
                if isinstance(default_table_expiration_ms, int)
                else default_table_expiration_ms
            ),
        }
        body = {k: v for k, v in fields.items() if v is not UNSET}
        return await self._call(
            ApiCall(
                "PATCH",
                self._dataset_path(dataset_id, project_id),
                body=body,
                callback=callback,
            )
        )

    async def delete_dataset(
        self,
        dataset_id: str,
        *,
        project_id: str | None = None,
        delete_contents: bool = False,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Delete a dataset; a missing dataset is not an error."""
        return await self._call(
            ApiCall(
                "DELETE",
                self._dataset_path(dataset_id, project_id),
                query={"deleteContents": delete_contents or None},
                callback=callback,
                absent_ok=True,
            )
        )

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def tables(
        self,
        dataset_id: str,
        *,
        project_id: str | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        return await self._list(
            f"{self._dataset_path(dataset_id, project_id)}/tables",
            "tables",
            callback=callback,
        )

    async def table(
        self,
        dataset_id: str,
        table_id: str,
        *,
        project_id: str | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Fetch a table resource, or ``None`` when it does not exist."""
        return await self._call(
            ApiCall(
                "GET",
                self._table_path(dataset_id, table_id, project_id),
                callback=callback,
                absent_ok=True,
            )
        )

    async def insert_table(
        self,
        dataset_id: str,
        table_id: str,
        *,
        project_id: str | None = None,
        schema: Iterable[Mapping[str, Any]] | None = None,
        query: str | None = None,
        friendly_name: str | None = None,
        description: str | None = None,
        expiration_time: float | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Create a table, or a view when *query* is given.

        ``expiration_time`` is a Unix timestamp in seconds.
        """
        if schema is not None and query is not None:
            raise ConfigurationError(
                "a table takes either a schema or a view query, not both"
            )
        body: dict[str, Any] = {
            "tableReference": table_ref(project_id or self.project_id, dataset_id, table_id)
        }
        optional = {
            "schema": {"fields": normalize_schema(schema)} if schema is not None else None,
            "view": {"query": query} if query is not None else None,
            "friendlyName": friendly_name,
            "description": description,
            "expirationTime": _seconds_to_ms(expiration_time),
        }
        body.update({k: v for k, v in optional.items() if v is not None})
        return await self._call(
            ApiCall(
                "POST",
                f"{self._dataset_path(dataset_id, project_id)}/tables",
                body=body,
                callback=callback,
            )
        )

    async def patch_table(
        self,
        dataset_id: str,
        table_id: str,
        *,
        project_id: str | None = None,
        friendly_name: Any = UNSET,
        description: Any = UNSET,
        expiration_time: Any = UNSET,
        schema: Any = UNSET,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Patch table fields; pass ``None`` to clear a field."""
        fields = {
            "friendlyName": friendly_name,
            "description": description,
            "expirationTime": (
                _seconds_to_ms(expiration_time)
                if isinstance(expiration_time, (int, float))
                else expiration_time
            ),
            "schema": (
                {"fields": normalize_schema(schema)}
                if isinstance(schema, (list, tuple))
                else schema
            ),
        }
        body = {k: v for k, v in fields.items() if v is not UNSET}
        return await self._call(
            ApiCall(
                "PATCH",
                self._table_path(dataset_id, table_id, project_id),
                body=body,
                callback=callback,
            )
        )

    async def delete_table(
        self,
        dataset_id: str,
        table_id: str,
        *,
        project_id: str | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Delete a table; a missing table is not an error."""
        return await self._call(
            ApiCall(
                "DELETE",
                self._table_path(dataset_id, table_id, project_id),
                callback=callback,
                absent_ok=True,
            )
        )

    # ------------------------------------------------------------------
    # Table data
    # ------------------------------------------------------------------

    async def list_tabledata(
        self,
        dataset_id: str,
        table_id: str,
        *,
        project_id: str | None = None,
        max_results: int | None = None,
        page_token: str | None = None,
        start_index: int | None = None,
        schema: Sequence[Mapping[str, Any]] | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Fetch one page of rows as ``{"total_rows", "next_token", "rows"}``.

        Rows are dicts keyed by column name. Without *schema* the table is
        fetched first to learn the column names, which needs a direct call.
        """
        if schema is None:
            self._dispatcher.require_direct("list_tabledata without schema=")
            table = await self.table(dataset_id, table_id, project_id=project_id)
            fields = schema_fields(table)
        else:
            fields = normalize_schema(schema)

        return await self._call(
            ApiCall(
                "GET",
                f"{self._table_path(dataset_id, table_id, project_id)}/data",
                query={
                    "maxResults": max_results,
                    "pageToken": page_token,
                    "startIndex": start_index,
                },
                callback=callback,
                transform=lambda payload: tabledata_result(payload, fields),
            )
        )

    async def insert_tabledata(
        self,
        dataset_id: str,
        table_id: str,
        rows: Iterable[Mapping[str, Any]],
        *,
        project_id: str | None = None,
        insert_ids: Sequence[str] | None = None,
        skip_invalid_rows: bool = False,
        ignore_unknown_values: bool = False,
        template_suffix: str | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Stream rows into a table; returns the service response (``insertErrors``)."""
        wire_rows: list[dict[str, Any]] = [{"json": dict(row)} for row in rows]
        if insert_ids is not None:
            if len(insert_ids) != len(wire_rows):
                raise ConfigurationError(
                    "insert_ids must match rows one-to-one",
                    hint=f"Got {len(insert_ids)} ids for {len(wire_rows)} rows.",
                )
            for row, insert_id in zip(wire_rows, insert_ids):
                row["insertId"] = insert_id
        body: dict[str, Any] = {"rows": wire_rows}
        if skip_invalid_rows:
            body["skipInvalidRows"] = True
        if ignore_unknown_values:
            body["ignoreUnknownValues"] = True
        if template_suffix is not None:
            body["templateSuffix"] = template_suffix
        return await self._call(
            ApiCall(
                "POST",
                f"{self._table_path(dataset_id, table_id, project_id)}/insertAll",
                body=body,
                callback=callback,
            )
        )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def query(
        self,
        sql: str,
        *,
        dataset_id: str | None = None,
        table_id: str | None = None,
        project_id: str | None = None,
        job_id: str | None = None,
        location: str | None = None,
        mode: str | None = None,
        priority: Priority | None = None,
        allow_large_results: bool | None = None,
        flatten_results: bool | None = None,
        use_query_cache: bool | None = None,
        use_legacy_sql: bool | None = None,
        user_defined_function_resources: Sequence[str] | None = None,
        maximum_bytes_billed: int | None = None,
        dry_run: bool = False,
        wait: float | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Submit a query job; with ``wait`` block until it is done."""
        destination = None
        if dataset_id is not None and table_id is not None:
            destination = table_ref(project_id or self.project_id, dataset_id, table_id)
        configuration = query_config(
            sql,
            destination=destination,
            mode=mode,
            priority=priority,
            allow_large_results=allow_large_results,
            flatten_results=flatten_results,
            use_query_cache=use_query_cache,
            use_legacy_sql=use_legacy_sql,
            user_defined_function_resources=user_defined_function_resources,
            maximum_bytes_billed=maximum_bytes_billed,
            dry_run=dry_run,
        )
        return await self._run_job(
            configuration,
            job_id=job_id,
            project_id=project_id,
            location=location,
            wait=wait,
            callback=callback,
        )

    async def load(
        self,
        dataset_id: str,
        table_id: str,
        *,
        source_uris: str | Sequence[str] | None = None,
        file: bytes | str | IO[Any] | None = None,
        schema: Iterable[Mapping[str, Any]] | None = None,
        project_id: str | None = None,
        job_id: str | None = None,
        location: str | None = None,
        mode: str | None = "append",
        wait: float | None = None,
        callback: ResultCallback | None = None,
        **options: Any,
    ) -> Any:
        """Submit a load job from storage URIs or from in-memory data.

        ``options`` are passed to :func:`strata.job_config.load_config`
        (``source_format``, ``field_delimiter``, ``skip_leading_rows``, ...).
        """
        if (source_uris is None) == (file is None):
            raise ConfigurationError(
                "load needs exactly one of source_uris= or file=",
                hint="Use source_uris for staged objects, file for local data.",
            )
        uris = [source_uris] if isinstance(source_uris, str) else source_uris
        configuration = load_config(
            table_ref(project_id or self.project_id, dataset_id, table_id),
            source_uris=uris,
            schema=schema,
            mode=mode,
            **options,
        )
        if file is None:
            return await self._run_job(
                configuration,
                job_id=job_id,
                project_id=project_id,
                location=location,
                wait=wait,
                callback=callback,
            )

        self._dispatcher.require_direct("load with file=")
        started = time.perf_counter()
        ref = self.jobs.reference(job_id, project_id=project_id, location=location)
        boundary = new_boundary("upload")
        media = _media_bytes(file)
        payload = encode_related(
            {"jobReference": ref.to_wire(), "configuration": configuration},
            media,
            "application/octet-stream",
            boundary,
        )
        call = ApiCall(
            "POST",
            f"{UPLOAD_PATH}/projects/{_seg(ref.project_id)}/jobs",
            query={"uploadType": "multipart"},
            transform=Job.from_response,
        )
        try:
            job = await self._dispatcher.execute(
                call,
                raw_body=payload,
                content_type=f"multipart/related; boundary={boundary}",
            )
            logger.debug(
                "uploaded %d bytes for job %s in %.2fs",
                len(media),
                ref,
                time.perf_counter() - started,
            )
            if wait is not None:
                job = await self.jobs.wait_until_done(job.job_reference, wait)
        except StrataError as exc:
            if callback is None:
                raise
            callback(None, exc)
            return None
        if callback is not None:
            callback(job, None)
        return job

    async def extract(
        self,
        dataset_id: str,
        table_id: str,
        destination_uris: str | Sequence[str],
        *,
        project_id: str | None = None,
        job_id: str | None = None,
        location: str | None = None,
        destination_format: str | None = None,
        compression: str | None = None,
        field_delimiter: str | None = None,
        print_header: bool | None = None,
        dry_run: bool = False,
        wait: float | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Submit an extract (export) job writing the table to storage URIs."""
        configuration = extract_config(
            table_ref(project_id or self.project_id, dataset_id, table_id),
            destination_uris,
            destination_format=destination_format,
            compression=compression,
            field_delimiter=field_delimiter,
            print_header=print_header,
            dry_run=dry_run,
        )
        return await self._run_job(
            configuration,
            job_id=job_id,
            project_id=project_id,
            location=location,
            wait=wait,
            callback=callback,
        )

    async def copy(
        self,
        src_dataset_id: str,
        src_table_id: str,
        dest_dataset_id: str,
        dest_table_id: str,
        *,
        src_project_id: str | None = None,
        dest_project_id: str | None = None,
        job_id: str | None = None,
        location: str | None = None,
        mode: str | None = None,
        dry_run: bool = False,
        wait: float | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Submit a copy job; the job runs in the destination project."""
        configuration = copy_config(
            table_ref(src_project_id or self.project_id, src_dataset_id, src_table_id),
            table_ref(dest_project_id or self.project_id, dest_dataset_id, dest_table_id),
            mode=mode,
            dry_run=dry_run,
        )
        return await self._run_job(
            configuration,
            job_id=job_id,
            project_id=dest_project_id,
            location=location,
            wait=wait,
            callback=callback,
        )

    async def job(
        self,
        job_id: str,
        *,
        location: str | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        ref = self.jobs.reference(job_id, location=location)
        return await self.jobs.poll(ref, callback=callback)

    async def cancel_job(
        self,
        job_id: str,
        *,
        location: str | None = None,
        callback: ResultCallback | None = None,
    ) -> Any:
        """Request cancellation; the returned job may still be PENDING or RUNNING."""
        ref = self.jobs.reference(job_id, location=location)
        return await self.jobs.cancel(ref, callback=callback)

    async def wait_job(
        self,
        job: Job | str,
        timeout_s: float = DEFAULT_WAIT_TIMEOUT_S,
        *,
        location: str | None = None,
    ) -> Job:
        """Block until the job is DONE; see :meth:`JobController.wait_until_done`."""
        ref = (
            job.job_reference
            if isinstance(job, Job)
            else self.jobs.reference(job, location=location)
        )
        return await self.jobs.wait_until_done(ref, timeout_s)

    async def list_jobs(
        self,
        *,
        project_id: str | None = None,
        all_users: bool = False,
        state_filter: str | None = None,
        max_results: int | None = None,
    ) -> list[Job]:
        return await self.jobs.list_jobs(
            project_id=project_id,
            all_users=all_users,
            state_filter=state_filter,
            max_results=max_results,
        )


__all__ = ["UNSET", "Client"]
