"""Row conversion for table data listings."""

from __future__ import annotations

import pytest

from strata.errors import MalformedResponseError
from strata.rows import convert_row, schema_fields, tabledata_result

pytestmark = pytest.mark.unit

FIELDS = [
    {"name": "word", "type": "STRING"},
    {"name": "count", "type": "INTEGER"},
    {"name": "tags", "type": "STRING", "mode": "REPEATED"},
    {
        "name": "origin",
        "type": "RECORD",
        "fields": [{"name": "play", "type": "STRING"}, {"name": "year", "type": "INTEGER"}],
    },
]


def test_rows_are_keyed_by_column_name() -> None:
    row = {
        "f": [
            {"v": "hamlet"},
            {"v": "42"},
            {"v": [{"v": "a"}, {"v": "b"}]},
            {"v": {"f": [{"v": "Hamlet"}, {"v": "1603"}]}},
        ]
    }

    assert convert_row(row, FIELDS) == {
        "word": "hamlet",
        "count": "42",
        "tags": ["a", "b"],
        "origin": {"play": "Hamlet", "year": "1603"},
    }


def test_nulls_stay_null_and_empty_repeated_is_a_list() -> None:
    row = {"f": [{"v": None}, {"v": None}, {"v": None}, {"v": None}]}

    assert convert_row(row, FIELDS) == {
        "word": None,
        "count": None,
        "tags": [],
        "origin": None,
    }


def test_row_without_cells_is_malformed() -> None:
    with pytest.raises(MalformedResponseError):
        convert_row({"values": []}, FIELDS)


def test_tabledata_result_shapes_the_page() -> None:
    payload = {"totalRows": "3", "pageToken": "next", "rows": [{"f": [{"v": "x"}]}]}

    result = tabledata_result(payload, [{"name": "word", "type": "STRING"}])

    assert result == {"total_rows": 3, "next_token": "next", "rows": [{"word": "x"}]}


def test_tabledata_result_without_rows() -> None:
    assert tabledata_result({"totalRows": "0"}, FIELDS) == {
        "total_rows": 0,
        "next_token": None,
        "rows": [],
    }


def test_schema_fields_reads_table_resource() -> None:
    assert schema_fields({"schema": {"fields": FIELDS}}) == FIELDS
    assert schema_fields(None) == []
    assert schema_fields({"kind": "table"}) == []
