from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, BinaryIO

from openpyxl import Workbook
from openpyxl.comments import Comment
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter, quote_sheetname
from openpyxl.worksheet.datavalidation import DataValidation
from openpyxl.worksheet.worksheet import Worksheet

from ..models.record import CanonicalRecord, StoredEmployee
from .columns import CANONICAL_COLUMNS, CATEGORY_COLUMNS, DATE_KEYS

"""Workbook writer: blank import template and record re-export.

Both use the canonical column order so an exported workbook can be edited and
imported again. Date columns are text-formatted and written verbatim, which
keeps the sentinel literals (NA / Milestone / SOW) intact.
"""

__all__ = [
    "TEMPLATE_SHEET",
    "LISTS_SHEET",
    "SAMPLE_ROWS",
    "write_template",
    "export_records",
]

logger = logging.getLogger(__name__)

TEMPLATE_SHEET = "Employees"
LISTS_SHEET = "Lists"
TEXT_FORMAT = "@"
MAX_VALIDATION_ROW = 1000

DATE_NOTE = (
    "Format: DD-MM-YYYY (YYYY-MM-DD and DD/MM/YYYY are also accepted).\n"
    "Special values NA, Milestone and SOW are kept as-is."
)

SAMPLE_ROWS: tuple[dict[str, Any], ...] = (
    {
        "serial_number": 1,
        "external_id": "EMP001",
        "name": "Asha Rao",
        "email": "asha.rao@example.com",
        "department": "Engineering",
        "designation": "Senior Engineer",
        "management_mode": "Managed Service",
        "client": "Acme Corp",
        "billability_status": "Billable",
        "po_number": "PO-1001",
        "billing": "Monthly",
        "last_active_date": "NA",
        "projects": "Acme Portal",
        "allocation_percentage": 100,
        "project_start_date": "01-04-2024",
        "project_end_date": "31-03-2025",
        "experience_band": "5-8 Years",
        "rate": 4500,
        "ageing_days": 120,
        "bench_days": 0,
        "phone_number": "+91 98765 43210",
        "emergency_contact": "+91 91234 56789",
        "ctc": 1800000,
        "remarks": "",
        "joining_date": "15-06-2019",
        "location": "Bengaluru",
        "manager": "Ravi Kumar",
        "skills": "Python; SQL",
        "assignment_project_name": "Acme Portal",
        "assignment_client": "Acme Corp",
        "assignment_allocation": 100,
        "assignment_start_date": "01-04-2024",
        "assignment_end_date": "31-03-2025",
        "assignment_role": "Developer",
        "assignment_billing_rate": 4500,
        "separation_date": "",
    },
    {
        "serial_number": 2,
        "external_id": "EMP002",
        "name": "Daniel Fernandes",
        "email": "daniel.fernandes@example.com",
        "department": "Delivery",
        "designation": "Project Manager",
        "management_mode": "Staff Augmentation",
        "client": "Globex",
        "billability_status": "Billable",
        "po_number": "PO-2001; PO-2002",
        "billing": "Milestone",
        "last_active_date": "",
        "projects": "Globex CRM; Globex Data",
        "allocation_percentage": 100,
        "project_start_date": "Milestone",
        "project_end_date": "SOW",
        "experience_band": "8-12 Years",
        "rate": 6000,
        "ageing_days": 45,
        "bench_days": 0,
        "phone_number": "9876501234",
        "emergency_contact": "",
        "ctc": 2600000,
        "remarks": "Split across two workstreams",
        "joining_date": "2021-01-10",
        "location": "Pune",
        "manager": "Meera Shah",
        "skills": "Scrum; Stakeholder Management",
        "assignment_project_name": "Globex CRM; Globex Data",
        "assignment_client": "Globex; Globex",
        "assignment_allocation": "60; 40",
        "assignment_start_date": "Milestone; 01-07-2024",
        "assignment_end_date": "SOW; SOW",
        "assignment_role": "Delivery Lead; Advisor",
        "assignment_billing_rate": "6000; 5500",
        "separation_date": "",
    },
)


def _write_header(ws: Worksheet) -> None:
    bold = Font(bold=True)
    for col_idx, (key, header) in enumerate(CANONICAL_COLUMNS, start=1):
        cell = ws.cell(row=1, column=col_idx, value=header)
        cell.font = bold
        if key in DATE_KEYS:
            cell.comment = Comment(DATE_NOTE, "workforce_import")
        ws.column_dimensions[get_column_letter(col_idx)].width = max(12, len(header) + 2)
    ws.freeze_panes = "A2"


def _write_rows(ws: Worksheet, rows: Iterable[Mapping[str, Any]]) -> int:
    count = 0
    for row_idx, row in enumerate(rows, start=2):
        for col_idx, (key, _header) in enumerate(CANONICAL_COLUMNS, start=1):
            value = row.get(key)
            if value in (None, ""):
                continue
            cell = ws.cell(row=row_idx, column=col_idx)
            if key in DATE_KEYS:
                # 日付は文字列のまま (Excel による自動変換を防ぐ)
                cell.value = str(value)
                cell.number_format = TEXT_FORMAT
            else:
                cell.value = value
        count += 1
    return count


def _format_date_columns(ws: Worksheet) -> None:
    for col_idx, (key, _header) in enumerate(CANONICAL_COLUMNS, start=1):
        if key in DATE_KEYS:
            ws.column_dimensions[get_column_letter(col_idx)].number_format = TEXT_FORMAT


def _add_list_validations(wb: Workbook, ws: Worksheet, options: Mapping[str, Sequence[str]]) -> int:
    """Advisory dropdowns: the error alert is off, any typed value is still accepted."""
    usable = {cat: [v for v in options.get(cat, ()) if v] for cat in CATEGORY_COLUMNS}
    usable = {cat: values for cat, values in usable.items() if values}
    if not usable:
        return 0

    lists_ws = wb.create_sheet(LISTS_SHEET)
    lists_ws.sheet_state = "hidden"
    column_of = {key: idx for idx, (key, _h) in enumerate(CANONICAL_COLUMNS, start=1)}

    added = 0
    for list_col, (category, values) in enumerate(usable.items(), start=1):
        lists_ws.cell(row=1, column=list_col, value=category)
        for i, value in enumerate(values, start=2):
            lists_ws.cell(row=i, column=list_col, value=value)
        letter = get_column_letter(list_col)
        formula = f"{quote_sheetname(LISTS_SHEET)}!${letter}$2:${letter}${len(values) + 1}"

        dv = DataValidation(type="list", formula1=formula, allow_blank=True)
        dv.showErrorMessage = False
        dv.showInputMessage = True
        dv.promptTitle = category.replace("_", " ").title()
        dv.prompt = "Pick a value or type a new one"
        target_col = get_column_letter(column_of[CATEGORY_COLUMNS[category]])
        dv.add(f"{target_col}2:{target_col}{MAX_VALIDATION_ROW}")
        ws.add_data_validation(dv)
        added += 1
    return added


def _save(wb: Workbook, destination: Path | str | BinaryIO) -> None:
    if isinstance(destination, (str, Path)):
        Path(destination).parent.mkdir(parents=True, exist_ok=True)
    wb.save(destination)


def write_template(
    destination: Path | str | BinaryIO,
    dropdown_options: Mapping[str, Sequence[str]] | None = None,
) -> None:
    """Write a blank import template with two sample rows."""
    wb = Workbook()
    ws = wb.active
    ws.title = TEMPLATE_SHEET
    _write_header(ws)
    written = _write_rows(ws, SAMPLE_ROWS)
    _format_date_columns(ws)
    lists = _add_list_validations(wb, ws, dropdown_options or {})
    _save(wb, destination)
    logger.debug("template written samples=%d list_validations=%d", written, lists)


def _record_row(index: int, record: CanonicalRecord, modified_by: str | None) -> dict[str, Any]:
    assignments = record.project_assignments

    def joined(attr: str) -> str:
        return "; ".join(str(_plain(getattr(a, attr))) for a in assignments)

    row: dict[str, Any] = {
        k: v for k, v in record.to_dict().items() if k not in ("skills", "project_assignments")
    }
    row.update(
        {
            "serial_number": index,
            "skills": "; ".join(record.skills),
            "last_modified_by": modified_by or "",
            "assignment_project_name": joined("project_name"),
            "assignment_client": joined("client"),
            "assignment_allocation": joined("allocation_percentage"),
            "assignment_start_date": joined("start_date"),
            "assignment_end_date": joined("end_date"),
            "assignment_role": joined("role"),
            "assignment_billing_rate": joined("billing_rate"),
        }
    )
    for key in ("allocation_percentage", "rate", "ctc"):
        row[key] = _plain(row[key])
    return row


def _plain(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def export_records(
    destination: Path | str | BinaryIO,
    records: Iterable[StoredEmployee | CanonicalRecord],
) -> int:
    """Re-export records in the canonical column order; returns the row count."""
    rows = []
    for idx, item in enumerate(records, start=1):
        if isinstance(item, StoredEmployee):
            rows.append(_record_row(idx, item.record, item.last_modified_by))
        else:
            rows.append(_record_row(idx, item, None))

    wb = Workbook()
    ws = wb.active
    ws.title = TEMPLATE_SHEET
    _write_header(ws)
    count = _write_rows(ws, rows)
    _format_date_columns(ws)
    _save(wb, destination)
    logger.debug("exported %d record(s)", count)
    return count
