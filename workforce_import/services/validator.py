from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from ..excel.columns import display_header
from ..models.raw_row import NormalizedRow
from ..models.record import DATE_FIELDS, CanonicalRecord
from .dates import is_valid_date
from .normalizer import split_multi, to_text

"""Batch validator.

Every row is checked and every violation is collected; the batch is rejected
wholesale with a single ValidationError when anything is wrong, before conflict
detection runs and before any write.
"""

__all__ = [
    "Violation",
    "ValidationError",
    "validate_batch",
    "validate_rows",
]

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[\d\s\-+()]+$")
MIN_PHONE_DIGITS = 10
MAX_TOTAL_ALLOCATION = 100.0


@dataclass(frozen=True)
class Violation:
    row_number: int
    external_id: str
    field: str
    message: str

    def __str__(self) -> str:
        return f"Row {self.row_number}: {self.message}"


class ValidationError(Exception):
    """Batch-level validation failure carrying every violation found."""

    def __init__(self, violations: Sequence[Violation]) -> None:
        self.violations = list(violations)
        super().__init__(f"{len(self.violations)} validation error(s)")

    @property
    def messages(self) -> list[str]:
        return [str(v) for v in self.violations]


# (field, low, high, integer)
_NUMERIC_RULES: tuple[tuple[str, float, float | None, bool], ...] = (
    ("allocation_percentage", 0.0, 100.0, False),
    ("rate", 0.0, None, False),
    ("ctc", 0.0, None, False),
    ("ageing_days", 0.0, None, True),
    ("bench_days", 0.0, None, True),
)


def _as_number(value: Any) -> float | None:
    text = to_text(value).replace(",", "").rstrip("%").strip()
    try:
        num = float(text)
    except ValueError:
        return None
    if not math.isfinite(num):
        return None
    return num


class _RowChecker:
    def __init__(self, row: NormalizedRow, out: list[Violation]) -> None:
        self.row = row
        self.record = row.record
        self.out = out

    def add(self, field: str, message: str) -> None:
        self.out.append(
            Violation(
                row_number=self.row.row_number,
                external_id=self.record.external_id,
                field=field,
                message=message,
            )
        )

    def check_required(self) -> None:
        rec = self.record
        if not rec.external_id:
            self.add("external_id", "Employee ID is required.")
        if not rec.name:
            self.add("name", "Name is required.")
        if not rec.department:
            self.add("department", "Department is required.")
        if not rec.designation:
            self.add("designation", "Designation is required.")

    def check_email_format(self) -> None:
        email = self.record.email
        if email and not EMAIL_RE.match(email):
            self.add("email", f'Invalid email format "{email}". Use user@company.com or leave empty.')

    def check_numbers(self) -> None:
        for field, low, high, integer in _NUMERIC_RULES:
            raw_value = self.row.raw.get(field)
            if to_text(raw_value) == "":
                continue
            label = display_header(field)
            num = _as_number(raw_value)
            if num is None:
                self.add(field, f'{label} must be a number. Current value: "{to_text(raw_value)}"')
                continue
            if integer and not num.is_integer():
                self.add(field, f'{label} must be a whole number. Current value: "{to_text(raw_value)}"')
            elif num < low or (high is not None and num > high):
                bounds = f"between {low:g} and {high:g}" if high is not None else f"at least {low:g}"
                self.add(field, f'{label} must be {bounds}. Current value: "{to_text(raw_value)}"')

    def check_dates(self) -> None:
        for field in DATE_FIELDS:
            value = getattr(self.record, field)
            if not is_valid_date(value):
                self.add(
                    field,
                    f'{display_header(field)} must be in DD-MM-YYYY format, "NA", "Milestone" or "SOW". '
                    f'Current value: "{value}"',
                )
        for idx, a in enumerate(self.record.project_assignments, start=1):
            for field, value in (("assignment_start_date", a.start_date), ("assignment_end_date", a.end_date)):
                if not is_valid_date(value):
                    self.add(
                        field,
                        f'{display_header(field)} (project {idx}) must be in DD-MM-YYYY format, '
                        f'"NA", "Milestone" or "SOW". Current value: "{value}"',
                    )

    def check_phones(self) -> None:
        for field in ("phone_number", "emergency_contact"):
            value = getattr(self.record, field)
            if not value:
                continue
            label = display_header(field)
            if not PHONE_RE.match(value):
                self.add(
                    field,
                    f"{label} may only contain digits, spaces, hyphens, parentheses and plus signs. "
                    f'Current value: "{value}"',
                )
            elif sum(ch.isdigit() for ch in value) < MIN_PHONE_DIGITS:
                self.add(field, f'{label} must have at least {MIN_PHONE_DIGITS} digits. Current value: "{value}"')

    def check_projects(self) -> None:
        for raw_alloc in split_multi(self.row.raw.get("assignment_allocation")):
            num = _as_number(raw_alloc)
            if num is None or num < 0 or num > 100:
                self.add(
                    "assignment_allocation",
                    f'Project Allocation Percentage must be between 0 and 100. Current value: "{raw_alloc}"',
                )
        for a in self.record.project_assignments:
            if not a.client:
                self.add("assignment_client", f'Project Client is required for project "{a.project_name}".')
        total = self.record.total_allocation
        if total > MAX_TOTAL_ALLOCATION:
            self.add(
                "assignment_allocation",
                f"Total project allocation percentage cannot exceed 100%. Current total: {total:g}%",
            )

    def check_skills(self) -> None:
        raw_skills = to_text(self.row.raw.get("skills"))
        if raw_skills and not self.record.skills:
            self.add("skills", "Skills contains only empty values. Separate skills with semicolons (;).")


def validate_rows(rows: Sequence[NormalizedRow]) -> list[Violation]:
    """Collect every violation in the batch (no short-circuit)."""
    violations: list[Violation] = []
    seen_ids: dict[str, int] = {}
    seen_emails: dict[str, int] = {}

    for row in rows:
        checker = _RowChecker(row, violations)
        checker.check_required()

        ext_key = row.record.external_id.lower()
        if ext_key:
            if ext_key in seen_ids:
                checker.add(
                    "external_id",
                    f'Duplicate Employee ID "{row.record.external_id}" (first seen on row {seen_ids[ext_key]}).',
                )
            else:
                seen_ids[ext_key] = row.row_number

        email = row.record.email
        if email:
            if email in seen_emails:
                checker.add("email", f'Duplicate Email "{email}" (first seen on row {seen_emails[email]}).')
            else:
                seen_emails[email] = row.row_number
            checker.check_email_format()

        checker.check_numbers()
        checker.check_dates()
        checker.check_phones()
        checker.check_projects()
        checker.check_skills()

    return violations


def validate_batch(rows: Sequence[NormalizedRow]) -> list[CanonicalRecord]:
    """Validate the batch and return its CanonicalRecords.

    Raises:
        ValidationError: carrying the full violation list when any row is invalid.
    """
    violations = validate_rows(rows)
    if violations:
        logger.debug("batch rejected: %d violation(s)", len(violations))
        raise ValidationError(violations)
    return [r.record for r in rows]
