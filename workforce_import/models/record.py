from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any

"""Canonical workforce record models.

CanonicalRecord is the typed record shape shared by every pipeline stage after
normalization and by the employee store. Date fields are kept as canonical
``DD-MM-YYYY`` strings (or one of the sentinel literals ``NA`` / ``Milestone`` /
``SOW``) so that non-calendar business states survive persistence and
re-export unchanged.
"""

__all__ = [
    "ProjectAssignment",
    "CanonicalRecord",
    "StoredEmployee",
    "RECORD_FIELDS",
    "DATE_FIELDS",
]


@dataclass(frozen=True)
class ProjectAssignment:
    project_name: str
    client: str
    allocation_percentage: float = 100.0
    start_date: str = ""
    end_date: str = ""
    role: str = ""
    po_number: str = ""
    billing: str = "Monthly"
    billing_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CanonicalRecord:
    """Typed workforce record (one per input row).

    Invariant: sum of ``allocation_percentage`` over ``project_assignments`` is
    at most 100 once the record has passed batch validation.
    """
    # identity
    external_id: str
    name: str
    email: str = ""
    department: str = ""
    designation: str = ""
    # classification
    management_mode: str = ""
    billability_status: str = ""
    experience_band: str = ""
    # engagement
    client: str = ""
    po_number: str = ""
    billing: str = ""
    projects: str = ""
    # numeric
    allocation_percentage: float = 0.0  # "Billability %" 列
    rate: float = 0.0
    ctc: float = 0.0
    ageing_days: int = 0
    bench_days: int = 0
    # dates (DD-MM-YYYY | sentinel | "")
    joining_date: str = ""
    separation_date: str = ""
    last_active_date: str = ""
    project_start_date: str = ""
    project_end_date: str = ""
    # contact / misc
    phone_number: str = ""
    emergency_contact: str = ""
    location: str = ""
    manager: str = ""
    remarks: str = ""
    skills: tuple[str, ...] = ()
    project_assignments: tuple[ProjectAssignment, ...] = ()
    # worksheet row the record came from; not part of the record's identity
    row_number: int = field(default=0, compare=False)

    @property
    def total_allocation(self) -> float:
        return sum(a.allocation_percentage for a in self.project_assignments)

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form used by stores and result payloads (row_number excluded)."""
        data = asdict(self)
        data.pop("row_number", None)
        data["skills"] = list(self.skills)
        data["project_assignments"] = [a.to_dict() for a in self.project_assignments]
        return data

    def without_row_number(self) -> CanonicalRecord:
        return replace(self, row_number=0)


@dataclass(frozen=True)
class StoredEmployee:
    """An existing entity in the employee store."""
    internal_id: str
    record: CanonicalRecord
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_modified_by: str | None = None

    @property
    def external_id(self) -> str:
        return self.record.external_id

    @property
    def email(self) -> str:
        return self.record.email


RECORD_FIELDS: tuple[str, ...] = tuple(
    name for name in CanonicalRecord.__dataclass_fields__ if name != "row_number"
)

DATE_FIELDS: tuple[str, ...] = (
    "joining_date",
    "separation_date",
    "last_active_date",
    "project_start_date",
    "project_end_date",
)
