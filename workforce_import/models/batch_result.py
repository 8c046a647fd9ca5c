from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

"""Batch result models.

BatchResult is built incrementally while the applier walks the batch and is
the batch's durable audit artifact once application finishes.
"""

__all__ = [
    "ApplyState",
    "RowError",
    "BatchResult",
]


class ApplyState(Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True)
class RowError:
    row_number: int  # worksheet row, -1 when unknown
    external_id: str
    message: str
    field: str | None = None
    error_type: str = "PERSISTENCE_ERROR"  # UPPER_SNAKE

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_number,
            "employee_id": self.external_id,
            "field": self.field,
            "error": self.message,
            "error_type": self.error_type,
        }


@dataclass
class BatchResult:
    batch_id: str
    total_rows: int = 0
    created: list[dict[str, Any]] = field(default_factory=list)
    updated: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    # worksheet row -> 最終状態
    row_states: dict[int, ApplyState] = field(default_factory=dict)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def updated_count(self) -> int:
        return len(self.updated)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def failed_count(self) -> int:
        return len(self.errors)

    @property
    def elapsed_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def record_created(self, external_id: str, record: dict[str, Any]) -> None:
        self.created.append({"employee_id": external_id, **record})

    def record_updated(self, external_id: str, record: dict[str, Any]) -> None:
        self.updated.append({"employee_id": external_id, **record})

    def record_skipped(self, external_id: str, reason: str) -> None:
        self.skipped.append({"employee_id": external_id, "reason": reason})

    def record_error(self, error: RowError) -> None:
        self.errors.append(error)

    def state_counts(self) -> dict[str, int]:
        return {s.value: sum(1 for v in self.row_states.values() if v is s) for s in ApplyState}

    def finish(self) -> BatchResult:
        self.end_time = datetime.now(UTC)
        return self

    def to_payload(self) -> dict[str, Any]:
        """Counts plus per-bucket details keyed by the row's external identifier."""
        return {
            "created": self.created_count,
            "updated": self.updated_count,
            "skipped": self.skipped_count,
            "errors": self.failed_count,
            "details": {
                "created": {e["employee_id"]: e for e in self.created},
                "updated": {e["employee_id"]: e for e in self.updated},
                "skipped": {e["employee_id"]: e for e in self.skipped},
                "errors": {e.external_id: e.to_dict() for e in self.errors},
            },
        }
