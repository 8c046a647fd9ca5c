from __future__ import annotations

import io
from datetime import datetime

import pandas as pd
import pytest

from workforce_import.excel.columns import map_header, normalize_header
from workforce_import.excel.reader import MalformedWorkbookError, inspect_workbook, read_workbook


def _raw_workbook(matrix: list[list[object]]) -> bytes:
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        pd.DataFrame(matrix).to_excel(writer, sheet_name="Sheet1", header=False, index=False)
    return buf.getvalue()


def test_header_normalization_and_aliases():
    assert normalize_header("  Employee   ID ") == "employee id"
    assert normalize_header("Billability %") == "billability"
    assert map_header(normalize_header("Reamarks")) == "remarks"
    assert map_header(normalize_header("Date of Joining")) == "joining_date"
    assert map_header(normalize_header("Mode of Engagement")) == "management_mode"
    # 未知ヘッダはそのまま
    assert map_header("favourite colour") == "favourite colour"


def test_read_workbook_maps_headers_and_row_numbers(make_workbook, employee_row):
    data = make_workbook([employee_row(), employee_row()])
    rows = read_workbook(data)
    assert [r.row_number for r in rows] == [2, 3]
    assert rows[0].get("external_id") == "EMP001"
    assert rows[1].get("email") == "employee2@example.com"
    assert rows[0].get("allocation_percentage") == 100


def test_read_workbook_keeps_literal_na():
    data = _raw_workbook([
        ["Employee ID", "Name", "Billing Last Active Date", "PO End Date"],
        ["E1", "Asha", "NA", "SOW"],
    ])
    rows = read_workbook(data)
    assert rows[0].get("last_active_date") == "NA"
    assert rows[0].get("project_end_date") == "SOW"


def test_read_workbook_drops_rows_without_id_or_name():
    data = _raw_workbook([
        ["Employee ID", "Name", "Email"],
        ["E1", "Asha", "a@example.com"],
        ["", "Formatting only", ""],
        ["E3", "", "c@example.com"],
        ["E4", "Daniel", ""],
    ])
    rows = read_workbook(data)
    assert [r.get("external_id") for r in rows] == ["E1", "E4"]
    assert [r.row_number for r in rows] == [2, 5]


def test_read_workbook_skips_blank_rows_and_trims_cells():
    data = _raw_workbook([
        ["Employee ID", "Name"],
        [None, None],
        ["  E1 ", " Asha  "],
    ])
    rows = read_workbook(data)
    assert len(rows) == 1
    assert rows[0].get("external_id") == "E1"
    assert rows[0].get("name") == "Asha"
    assert rows[0].row_number == 3


def test_read_workbook_datetime_cells_become_python_datetimes():
    data = _raw_workbook([
        ["Employee ID", "Name", "Joining Date"],
        ["E1", "Asha", datetime(2020, 5, 17)],
    ])
    rows = read_workbook(data)
    value = rows[0].get("joining_date")
    assert isinstance(value, datetime)
    assert (value.year, value.month, value.day) == (2020, 5, 17)


def test_header_only_workbook_is_malformed():
    data = _raw_workbook([["Employee ID", "Name"]])
    with pytest.raises(MalformedWorkbookError):
        read_workbook(data)


def test_undecodable_bytes_are_malformed():
    with pytest.raises(MalformedWorkbookError) as e:
        read_workbook(b"this is not a workbook")
    assert "cannot read workbook" in str(e.value)


def test_read_workbook_from_path(write_workbook, employee_row):
    path = write_workbook("people.xlsx", [employee_row()])
    rows = read_workbook(path)
    assert rows[0].get("name") == "Employee 1"


def test_inspect_workbook(make_workbook, employee_row):
    info = inspect_workbook(make_workbook([employee_row(), employee_row(), employee_row(), employee_row()]), limit=2)
    assert info["rows"] == 4
    assert "external_id" in info["columns"]
    assert len(info["sample_rows"]) == 2
