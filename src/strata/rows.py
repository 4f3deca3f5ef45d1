"""Row conversion for table data listings.

The service returns rows positionally: ``{"f": [{"v": ...}, ...]}`` with the
column names living in the table schema. Values stay as the service sends
them (strings for scalars); only the structure is rebuilt.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from strata.errors import MalformedResponseError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_RECORD_TYPES = frozenset({"RECORD", "STRUCT"})


def schema_fields(table: Any) -> list[dict[str, Any]]:
    """Pull ``schema.fields`` out of a table resource."""
    if not isinstance(table, dict):
        return []
    schema = table.get("schema") or {}
    fields = schema.get("fields") if isinstance(schema, dict) else None
    return list(fields) if isinstance(fields, list) else []


def _scalar(value: Any, field: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    if str(field.get("type", "")).upper() in _RECORD_TYPES:
        return convert_row(value, field.get("fields") or [])
    return value


def _cell(value: Any, field: Mapping[str, Any]) -> Any:
    if str(field.get("mode", "")).upper() == "REPEATED":
        if value is None:
            return []
        if not isinstance(value, list):
            raise MalformedResponseError(
                f"repeated field {field.get('name')!r} did not hold a list"
            )
        return [
            _scalar(item.get("v") if isinstance(item, dict) else item, field)
            for item in value
        ]
    return _scalar(value, field)


def convert_row(row: Any, fields: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    if not isinstance(row, dict) or not isinstance(row.get("f"), list):
        raise MalformedResponseError("table row is not in {'f': [...]} form")
    cells = row["f"]
    return {
        str(field["name"]): _cell(cell.get("v") if isinstance(cell, dict) else None, field)
        for field, cell in zip(fields, cells)
    }


def convert_rows(
    rows: Sequence[Any] | None, fields: Sequence[Mapping[str, Any]]
) -> list[dict[str, Any]]:
    return [convert_row(row, fields) for row in rows or []]


def tabledata_result(payload: Any, fields: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    """Shape a tabledata.list payload as ``{total_rows, next_token, rows}``."""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise MalformedResponseError("tabledata listing is not an object")
    try:
        total = int(payload.get("totalRows", 0))
    except (TypeError, ValueError):
        raise MalformedResponseError(
            f"totalRows is not a number: {payload.get('totalRows')!r}"
        ) from None
    return {
        "total_rows": total,
        "next_token": payload.get("pageToken") or None,
        "rows": convert_rows(payload.get("rows"), fields),
    }
