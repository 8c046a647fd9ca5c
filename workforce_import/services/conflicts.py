from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from ..models.conflict import ConflictKind, ConflictRecord, DetectionResult, FieldDifference
from ..models.record import CanonicalRecord, StoredEmployee
from .dates import SENTINELS, date_for_comparison

"""Conflict detection against a snapshot of the employee store.

An incoming record conflicts with an existing entity when it matches by
identifier or by email (both case-insensitive, two independent lookups).
Field-level diffing is semantic: placeholder project names and
"no concrete date" states never count as differences.
"""

__all__ = [
    "COMPARED_FIELDS",
    "compare_fields",
    "detect_conflicts",
    "is_default_project",
]

logger = logging.getLogger(__name__)

COMPARED_FIELDS: tuple[str, ...] = (
    "name",
    "email",
    "department",
    "designation",
    "management_mode",
    "client",
    "billability_status",
    "po_number",
    "billing",
    "last_active_date",
    "projects",
    "allocation_percentage",
    "project_start_date",
    "project_end_date",
    "experience_band",
    "rate",
    "ageing_days",
    "bench_days",
    "phone_number",
    "emergency_contact",
    "ctc",
    "remarks",
    "joining_date",
    "location",
    "manager",
    "skills",
    "separation_date",
)

_DATE_COMPARED = frozenset({
    "last_active_date",
    "project_start_date",
    "project_end_date",
    "joining_date",
    "separation_date",
})

DEFAULT_PROJECT_SUFFIX = " - Default Project"
CLIENT_ONLY_PREFIX = "__CLIENT_ONLY__"


def is_default_project(project: str, client: str) -> bool:
    """True when ``project`` is the auto-generated placeholder for ``client``."""
    if not project or not client:
        return False
    return project in (client, f"{client}{DEFAULT_PROJECT_SUFFIX}", f"{CLIENT_ONLY_PREFIX}{client}")


def _project_key(project: str, client: str) -> str:
    project = (project or "").strip()
    if is_default_project(project, (client or "").strip()):
        return ""
    return project


def _is_empty_date(key: str) -> bool:
    return key == "" or key == "na"


def _dates_equivalent(existing: str, incoming: str) -> bool:
    a = date_for_comparison(existing)
    b = date_for_comparison(incoming)
    a_sentinel = a in SENTINELS
    b_sentinel = b in SENTINELS
    # センチネル同士 / センチネル vs 空 は差分とみなさない
    if (a_sentinel and _is_empty_date(b)) or (b_sentinel and _is_empty_date(a)):
        return True
    if a_sentinel and b_sentinel:
        return True
    return a == b


def _scalar_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _values_equal(value_a: Any, value_b: Any) -> bool:
    if isinstance(value_a, (int, float)) and isinstance(value_b, (int, float)):
        return float(value_a) == float(value_b)
    return _scalar_text(value_a) == _scalar_text(value_b)


def compare_fields(existing: CanonicalRecord, incoming: CanonicalRecord) -> list[FieldDifference]:
    """Semantic field-level diff over COMPARED_FIELDS."""
    differences: list[FieldDifference] = []
    for field in COMPARED_FIELDS:
        old = getattr(existing, field)
        new = getattr(incoming, field)

        if field == "skills":
            old_text = "; ".join(old)
            new_text = "; ".join(new)
            if old_text != new_text:
                differences.append(FieldDifference(field, old_text, new_text))
            continue

        if field == "projects":
            if _project_key(old, existing.client) != _project_key(new, incoming.client):
                differences.append(FieldDifference(field, old, new))
            continue

        if field in _DATE_COMPARED:
            if not _dates_equivalent(old, new):
                differences.append(FieldDifference(field, old, new))
            continue

        if not _values_equal(old, new):
            differences.append(FieldDifference(field, old, new))
    return differences


def _index(existing: Iterable[StoredEmployee]) -> tuple[dict[str, StoredEmployee], dict[str, StoredEmployee]]:
    by_id: dict[str, StoredEmployee] = {}
    by_email: dict[str, StoredEmployee] = {}
    for emp in existing:
        by_id.setdefault(emp.external_id.strip().lower(), emp)
        email = (emp.email or "").strip().lower()
        if email:
            by_email.setdefault(email, emp)
    return by_id, by_email


def detect_conflicts(
    records: Sequence[CanonicalRecord],
    existing: Iterable[StoredEmployee],
) -> DetectionResult:
    """Split a validated batch into conflicts and clean inserts."""
    by_id, by_email = _index(existing)
    conflicts: list[ConflictRecord] = []
    clean: list[CanonicalRecord] = []

    for record in records:
        id_match = by_id.get(record.external_id.strip().lower())
        email_match = by_email.get(record.email.strip().lower()) if record.email else None

        if id_match is None and email_match is None:
            clean.append(record)
            continue

        if id_match is not None and email_match is not None and id_match.internal_id != email_match.internal_id:
            kind = ConflictKind.ID_AND_EMAIL_DISTINCT
        elif id_match is not None:
            kind = ConflictKind.ID_ONLY
        else:
            kind = ConflictKind.EMAIL_ONLY

        # ID 一致を優先
        matched: StoredEmployee = id_match or email_match  # type: ignore[assignment]
        diffs = compare_fields(matched.record, record)
        conflicts.append(
            ConflictRecord(
                conflict_id=f"conflict-{len(conflicts)}",
                row_number=record.row_number,
                incoming=record,
                existing=matched,
                kind=kind,
                differences=tuple(diffs),
            )
        )
        logger.debug(
            "row=%d employee_id=%s conflict kind=%s differences=%d",
            record.row_number,
            record.external_id,
            kind.value,
            len(diffs),
        )

    return DetectionResult(conflicts=conflicts, clean_inserts=clean)
