"""Builders for the four job configuration variants.

Each builder returns the service's JSON ``configuration`` object. Options the
caller leaves as ``None`` are omitted so the service applies its defaults.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

from strata.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

WriteMode = Literal["truncate", "append", "empty"]
Priority = Literal["INTERACTIVE", "BATCH"]

_WRITE_DISPOSITIONS: dict[str, str] = {
    "truncate": "WRITE_TRUNCATE",
    "append": "WRITE_APPEND",
    "empty": "WRITE_EMPTY",
}


def _compact(values: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def table_ref(project_id: str, dataset_id: str, table_id: str) -> dict[str, str]:
    return {"projectId": project_id, "datasetId": dataset_id, "tableId": table_id}


def write_disposition(mode: str | None) -> str | None:
    """Accept ``truncate``/``append``/``empty`` or a raw ``WRITE_*`` value."""
    if mode is None:
        return None
    if mode.upper().startswith("WRITE_"):
        return mode.upper()
    try:
        return _WRITE_DISPOSITIONS[mode.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown write mode: {mode!r}",
            hint="Use 'truncate', 'append' or 'empty'.",
        ) from None


def normalize_schema(fields: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Normalize a field list to the wire shape, recursing into RECORD fields."""
    normalized: list[dict[str, Any]] = []
    for f in fields:
        name = f.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigurationError(
                f"schema field without a name: {dict(f)!r}",
                hint="Every field needs at least {'name': ..., 'type': ...}.",
            )
        entry: dict[str, Any] = {"name": name, "type": str(f.get("type", "STRING")).upper()}
        if f.get("mode") is not None:
            entry["mode"] = str(f["mode"]).upper()
        if f.get("description") is not None:
            entry["description"] = f["description"]
        if f.get("fields"):
            entry["fields"] = normalize_schema(f["fields"])
        normalized.append(entry)
    return normalized


def _udf_resources(resources: Sequence[str] | None) -> list[dict[str, str]] | None:
    if resources is None:
        return None
    out: list[dict[str, str]] = []
    for r in resources:
        if r.startswith("gs://"):
            out.append({"resourceUri": r})
        else:
            out.append({"inlineCode": r})
    return out


def query_config(
    sql: str,
    *,
    destination: Mapping[str, str] | None = None,
    default_dataset: Mapping[str, str] | None = None,
    mode: str | None = None,
    create_disposition: str | None = None,
    priority: Priority | None = None,
    allow_large_results: bool | None = None,
    flatten_results: bool | None = None,
    use_query_cache: bool | None = None,
    use_legacy_sql: bool | None = None,
    user_defined_function_resources: Sequence[str] | None = None,
    maximum_bytes_billed: int | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    if not sql or not sql.strip():
        raise ConfigurationError("query text must not be empty")
    query = _compact(
        {
            "query": sql,
            "destinationTable": dict(destination) if destination else None,
            "defaultDataset": dict(default_dataset) if default_dataset else None,
            "writeDisposition": write_disposition(mode),
            "createDisposition": create_disposition,
            "priority": priority,
            "allowLargeResults": allow_large_results,
            "flattenResults": flatten_results,
            "useQueryCache": use_query_cache,
            "useLegacySql": use_legacy_sql,
            "userDefinedFunctionResources": _udf_resources(user_defined_function_resources),
            "maximumBytesBilled": (
                str(maximum_bytes_billed) if maximum_bytes_billed is not None else None
            ),
        }
    )
    config: dict[str, Any] = {"query": query}
    if dry_run:
        config["dryRun"] = True
    return config


def load_config(
    destination: Mapping[str, str],
    *,
    source_uris: Sequence[str] | None = None,
    schema: Iterable[Mapping[str, Any]] | None = None,
    source_format: str | None = None,
    mode: str | None = None,
    create_disposition: str | None = None,
    field_delimiter: str | None = None,
    allow_jagged_rows: bool | None = None,
    max_bad_records: int | None = None,
    ignore_unknown_values: bool | None = None,
    allow_quoted_newlines: bool | None = None,
    skip_leading_rows: int | None = None,
    quote: str | None = None,
    encoding: str | None = None,
    autodetect: bool | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    load = _compact(
        {
            "destinationTable": dict(destination),
            "sourceUris": list(source_uris) if source_uris is not None else None,
            "schema": {"fields": normalize_schema(schema)} if schema is not None else None,
            "sourceFormat": source_format,
            "writeDisposition": write_disposition(mode),
            "createDisposition": create_disposition,
            "fieldDelimiter": field_delimiter,
            "allowJaggedRows": allow_jagged_rows,
            "maxBadRecords": max_bad_records,
            "ignoreUnknownValues": ignore_unknown_values,
            "allowQuotedNewlines": allow_quoted_newlines,
            "skipLeadingRows": skip_leading_rows,
            "quote": quote,
            "encoding": encoding,
            "autodetect": autodetect,
        }
    )
    config: dict[str, Any] = {"load": load}
    if dry_run:
        config["dryRun"] = True
    return config


def extract_config(
    source: Mapping[str, str],
    destination_uris: str | Sequence[str],
    *,
    destination_format: str | None = None,
    compression: str | None = None,
    field_delimiter: str | None = None,
    print_header: bool | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    if isinstance(destination_uris, str):
        uris = [destination_uris]
    else:
        uris = list(destination_uris)
    if not uris:
        raise ConfigurationError("extract needs at least one destination URI")
    extract = _compact(
        {
            "sourceTable": dict(source),
            "destinationUris": uris,
            "destinationFormat": destination_format,
            "compression": compression,
            "fieldDelimiter": field_delimiter,
            "printHeader": print_header,
        }
    )
    config: dict[str, Any] = {"extract": extract}
    if dry_run:
        config["dryRun"] = True
    return config


def copy_config(
    sources: Mapping[str, str] | Sequence[Mapping[str, str]],
    destination: Mapping[str, str],
    *,
    mode: str | None = None,
    create_disposition: str | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    if isinstance(sources, dict):
        source_list = [dict(sources)]
    else:
        source_list = [dict(s) for s in sources]
    if not source_list:
        raise ConfigurationError("copy needs at least one source table")
    copy = _compact(
        {
            "sourceTables": source_list,
            "destinationTable": dict(destination),
            "writeDisposition": write_disposition(mode),
            "createDisposition": create_disposition,
        }
    )
    config: dict[str, Any] = {"copy": copy}
    if dry_run:
        config["dryRun"] = True
    return config
