from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from typing import Any

from ..models.raw_row import NormalizedRow, RawRow
from ..models.record import CanonicalRecord, ProjectAssignment
from .dates import normalize_date

"""Field normalizer: RawRow (loosely typed) -> CanonicalRecord (strictly typed).

Normalization is lenient. Unparseable dates pass through, numbers fall back to
defaults and are clamped; the batch validator rejects bad input afterwards by
looking at the original cells kept in NormalizedRow.raw.
"""

__all__ = [
    "normalize_row",
    "normalize_rows",
    "to_text",
    "parse_number",
    "parse_int",
    "split_multi",
    "normalize_billability_status",
    "expand_assignments",
]

logger = logging.getLogger(__name__)

MULTI_SEPARATOR = ";"
DEFAULT_BILLING = "Monthly"
DEFAULT_ASSIGNMENT_ALLOCATION = 100.0

_BILLABILITY_SYNONYMS: dict[str, str] = {
    "na": "NA",
    "n/a": "NA",
    "billable": "Billable",
    "billed": "Billable",
    "billing": "Billable",
    "non-billable": "Non-Billable",
    "non billable": "Non-Billable",
    "non_billable": "Non-Billable",
    "not billable": "Non-Billable",
    "bench": "Bench",
    "on bench": "Bench",
    "on-bench": "Bench",
    "training": "Training",
    "in training": "Training",
    "shadowing": "Shadowing",
    "shadow": "Shadowing",
    "trainee": "Trainee",
    "buffer": "Buffer",
    "ml": "ML",
    "maternity leave": "ML",
    "medical leave": "ML",
}


def to_text(value: Any) -> str:
    """Cell -> trimmed text. Integral floats lose their '.0' (phone numbers etc)."""
    if value is None:
        return ""
    if isinstance(value, float):
        if value != value:  # NaN
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def parse_number(value: Any, default: float = 0.0) -> float:
    text = to_text(value).replace(",", "").rstrip("%").strip()
    if not text:
        return default
    try:
        num = float(text)
    except ValueError:
        return default
    if not math.isfinite(num):
        return default
    return num


def parse_int(value: Any, default: int = 0) -> int:
    num = parse_number(value, float(default))
    return int(num)


def _clamp(value: float, low: float | None = None, high: float | None = None) -> float:
    if low is not None and value < low:
        return low
    if high is not None and value > high:
        return high
    return value


def split_multi(value: Any) -> list[str]:
    """Split a ';'-separated cell, trimming and dropping empty elements."""
    text = to_text(value)
    if not text:
        return []
    return [part.strip() for part in text.split(MULTI_SEPARATOR) if part.strip()]


def normalize_billability_status(status: Any) -> str:
    text = to_text(status)
    if not text:
        return "Bench"
    return _BILLABILITY_SYNONYMS.get(text.lower(), text)


def _pick(values: list[Any], index: int, fallback: Any = None) -> Any:
    # 位置に値が無ければ先頭要素、それも無ければ fallback
    if index < len(values) and values[index] not in (None, ""):
        return values[index]
    if values and values[0] not in (None, ""):
        return values[0]
    return fallback


def expand_assignments(raw: RawRow) -> tuple[ProjectAssignment, ...]:
    """Zip the ';'-separated project group positionally into ProjectAssignments."""
    names = split_multi(raw.get("assignment_project_name"))
    if not names:
        return ()

    row_client = to_text(raw.get("client"))
    row_rate = _clamp(parse_number(raw.get("rate"), 0.0), 0.0)
    clients = split_multi(raw.get("assignment_client")) or split_multi(row_client)
    allocations = [
        _clamp(parse_number(a, DEFAULT_ASSIGNMENT_ALLOCATION), 0.0, 100.0)
        for a in split_multi(raw.get("assignment_allocation"))
    ]
    starts = [normalize_date(d) for d in _split_dates(raw.get("assignment_start_date"))]
    ends = [normalize_date(d) for d in _split_dates(raw.get("assignment_end_date"))]
    roles = split_multi(raw.get("assignment_role"))
    po_numbers = split_multi(raw.get("po_number"))
    rates = [_clamp(parse_number(r, row_rate), 0.0) for r in split_multi(raw.get("assignment_billing_rate"))]
    billing = to_text(raw.get("billing")) or DEFAULT_BILLING

    assignments = []
    for i, name in enumerate(names):
        assignments.append(
            ProjectAssignment(
                project_name=name,
                client=_pick(clients, i, row_client) or "",
                allocation_percentage=_pick(allocations, i, DEFAULT_ASSIGNMENT_ALLOCATION),
                start_date=_pick(starts, i, ""),
                end_date=_pick(ends, i, ""),
                role=_pick(roles, i, ""),
                po_number=_pick(po_numbers, i, ""),
                billing=billing,
                billing_rate=_pick(rates, i, row_rate),
            )
        )
    return tuple(assignments)


def _split_dates(value: Any) -> list[Any]:
    # 日付セル (datetime / serial) は分割せずそのまま 1 要素として扱う
    if value is None:
        return []
    if isinstance(value, str):
        return split_multi(value)
    return [value]


def normalize_row(raw: RawRow) -> NormalizedRow:
    assignments = expand_assignments(raw)
    first = assignments[0] if assignments else None

    projects = to_text(raw.get("projects")) or to_text(raw.get("assignment_project_name"))
    po_start = normalize_date(raw.get("project_start_date"))
    po_end = normalize_date(raw.get("project_end_date"))

    record = CanonicalRecord(
        external_id=to_text(raw.get("external_id")),
        name=to_text(raw.get("name")),
        email=to_text(raw.get("email")).lower(),
        department=to_text(raw.get("department")),
        designation=to_text(raw.get("designation")),
        management_mode=to_text(raw.get("management_mode")),
        billability_status=normalize_billability_status(raw.get("billability_status")),
        experience_band=to_text(raw.get("experience_band")),
        client=to_text(raw.get("client")),
        po_number=to_text(raw.get("po_number")),
        billing=to_text(raw.get("billing")),
        projects=projects,
        allocation_percentage=_clamp(parse_number(raw.get("allocation_percentage"), 0.0), 0.0, 100.0),
        rate=_clamp(parse_number(raw.get("rate"), 0.0), 0.0),
        ctc=_clamp(parse_number(raw.get("ctc"), 0.0), 0.0),
        ageing_days=max(0, parse_int(raw.get("ageing_days"), 0)),
        bench_days=max(0, parse_int(raw.get("bench_days"), 0)),
        joining_date=normalize_date(raw.get("joining_date")),
        separation_date=normalize_date(raw.get("separation_date")),
        last_active_date=normalize_date(raw.get("last_active_date")),
        project_start_date=po_start or (first.start_date if first else ""),
        project_end_date=po_end or (first.end_date if first else ""),
        phone_number=to_text(raw.get("phone_number")),
        emergency_contact=to_text(raw.get("emergency_contact")),
        location=to_text(raw.get("location")),
        manager=to_text(raw.get("manager")),
        remarks=to_text(raw.get("remarks")),
        skills=tuple(split_multi(raw.get("skills"))),
        project_assignments=assignments,
        row_number=raw.row_number,
    )
    return NormalizedRow(row_number=raw.row_number, raw=raw, record=record)


def normalize_rows(rows: Iterable[RawRow]) -> list[NormalizedRow]:
    normalized = [normalize_row(r) for r in rows]
    logger.debug("normalized %d row(s)", len(normalized))
    return normalized
