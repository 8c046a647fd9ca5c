from __future__ import annotations

import re

"""Workbook column layout: canonical keys, display headers and header aliases.

Header text is matched case/punctuation-insensitively: ``normalize_header``
reduces it to lower-case alphanumerics separated by single spaces, then
``HEADER_ALIASES`` maps that text to a canonical key.
"""

__all__ = [
    "CANONICAL_COLUMNS",
    "HEADER_ALIASES",
    "DATE_KEYS",
    "ASSIGNMENT_KEYS",
    "CATEGORY_COLUMNS",
    "normalize_header",
    "map_header",
    "display_header",
]

# Template / export order (key, header)
CANONICAL_COLUMNS: tuple[tuple[str, str], ...] = (
    ("serial_number", "S.No"),
    ("external_id", "Employee ID"),
    ("name", "Name"),
    ("email", "Email"),
    ("department", "Department"),
    ("designation", "Designation"),
    ("management_mode", "Mode of Management"),
    ("client", "Client"),
    ("billability_status", "Billability Status"),
    ("po_number", "PO Number"),
    ("billing", "Billing"),
    ("last_active_date", "Billing Last Active Date"),
    ("projects", "Projects"),
    ("allocation_percentage", "Billability %"),
    ("project_start_date", "PO Start Date"),
    ("project_end_date", "PO End Date"),
    ("experience_band", "Experience Band"),
    ("rate", "Rate"),
    ("ageing_days", "Ageing"),
    ("bench_days", "Bench Days"),
    ("phone_number", "Phone Number"),
    ("emergency_contact", "Emergency Number"),
    ("ctc", "CTC"),
    ("remarks", "Remarks"),
    ("last_modified_by", "Last Modified By"),
    ("joining_date", "Joining Date"),
    ("location", "Location"),
    ("manager", "Manager"),
    ("skills", "Skills"),
    ("assignment_project_name", "Project Name"),
    ("assignment_client", "Project Client"),
    ("assignment_allocation", "Allocation Percentage"),
    ("assignment_start_date", "Project Start Date"),
    ("assignment_end_date", "Project End Date"),
    ("assignment_role", "Role in Project"),
    ("assignment_billing_rate", "Billing Rate"),
    ("separation_date", "Date of Separation"),
)

HEADER_ALIASES: dict[str, str] = {
    "sno": "serial_number",
    "s no": "serial_number",
    "serial number": "serial_number",
    "employee id": "external_id",
    "emp id": "external_id",
    "employee code": "external_id",
    "name": "name",
    "employee name": "name",
    "email": "email",
    "email id": "email",
    "email address": "email",
    "department": "department",
    "designation": "designation",
    "mode of engagement": "management_mode",
    "mode of management": "management_mode",
    "client": "client",
    "billability status": "billability_status",
    "po number": "po_number",
    "po no": "po_number",
    "billing": "billing",
    "billing last active date": "last_active_date",
    "last active date": "last_active_date",
    "projects": "projects",
    "billability": "allocation_percentage",
    "billability percentage": "allocation_percentage",
    "po start date": "project_start_date",
    "po end date": "project_end_date",
    "exp band": "experience_band",
    "experience band": "experience_band",
    "rate": "rate",
    "ageing": "ageing_days",
    "aging": "ageing_days",
    "number of days on bench": "bench_days",
    "bench days": "bench_days",
    "phone number": "phone_number",
    "contact number": "phone_number",
    "emergency contact": "emergency_contact",
    "emergency number": "emergency_contact",
    "ctc": "ctc",
    "reamarks": "remarks",
    "remarks": "remarks",
    "last modified by": "last_modified_by",
    "joining date": "joining_date",
    "date of joining": "joining_date",
    "location": "location",
    "manager": "manager",
    "skills": "skills",
    "project name": "assignment_project_name",
    "project client": "assignment_client",
    "allocation percentage": "assignment_allocation",
    "allocation": "assignment_allocation",
    "project start date": "assignment_start_date",
    "project end date": "assignment_end_date",
    "role in project": "assignment_role",
    "project role": "assignment_role",
    "billing rate": "assignment_billing_rate",
    "date of separation": "separation_date",
    "separation date": "separation_date",
}

DATE_KEYS: frozenset[str] = frozenset({
    "last_active_date",
    "project_start_date",
    "project_end_date",
    "joining_date",
    "separation_date",
    "assignment_start_date",
    "assignment_end_date",
})

ASSIGNMENT_KEYS: tuple[str, ...] = (
    "assignment_project_name",
    "assignment_client",
    "assignment_allocation",
    "assignment_start_date",
    "assignment_end_date",
    "assignment_role",
    "po_number",
    "assignment_billing_rate",
)

# dropdown (advisory list validation) category -> column key
CATEGORY_COLUMNS: dict[str, str] = {
    "department": "department",
    "designation": "designation",
    "mode_of_management": "management_mode",
    "client": "client",
    "billability_status": "billability_status",
    "experience_band": "experience_band",
    "location": "location",
}

_WS_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^a-z0-9 ]")
_DISPLAY = dict(CANONICAL_COLUMNS)


def normalize_header(header: object) -> str:
    """Lower-case, collapse whitespace, strip punctuation."""
    text = _WS_RE.sub(" ", str(header or "").lower())
    text = _PUNCT_RE.sub("", text)
    return _WS_RE.sub(" ", text).strip()


def map_header(normalized: str) -> str:
    """Map a normalized header to its canonical key (unknown headers pass through)."""
    return HEADER_ALIASES.get(normalized, normalized)


def display_header(key: str) -> str:
    return _DISPLAY.get(key, key)
