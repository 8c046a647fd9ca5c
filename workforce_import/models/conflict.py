from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .record import CanonicalRecord, StoredEmployee

"""Conflict / resolution domain models.

Lifecycle of a ConflictRecord:
    detected -> (pending resolution) -> resolved (keep_existing | use_incoming)
    -> applied | failed

Resolutions arrive as a tagged union (BatchDefault | PerConflict) and are
flattened to one action per conflict before the applier runs.
"""

__all__ = [
    "ConflictKind",
    "FieldDifference",
    "ConflictRecord",
    "DetectionResult",
    "ResolutionAction",
    "ConflictPolicy",
    "BatchDefault",
    "PerConflict",
    "Resolution",
]


class ConflictKind(Enum):
    ID_ONLY = "employee_id"
    EMAIL_ONLY = "email"
    ID_AND_EMAIL_DISTINCT = "both_id_and_email"


@dataclass(frozen=True)
class FieldDifference:
    field: str
    existing_value: Any
    incoming_value: Any


@dataclass(frozen=True)
class ConflictRecord:
    """One incoming record matched against exactly one existing entity."""
    conflict_id: str
    row_number: int
    incoming: CanonicalRecord
    existing: StoredEmployee
    kind: ConflictKind
    differences: tuple[FieldDifference, ...] = ()

    @property
    def has_differences(self) -> bool:
        return bool(self.differences)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conflict_id": self.conflict_id,
            "row": self.row_number,
            "external_id": self.incoming.external_id,
            "existing_id": self.existing.internal_id,
            "kind": self.kind.value,
            "differences": [
                {"field": d.field, "existing": d.existing_value, "incoming": d.incoming_value}
                for d in self.differences
            ],
        }


@dataclass(frozen=True)
class DetectionResult:
    conflicts: list[ConflictRecord]
    clean_inserts: list[CanonicalRecord]

    @property
    def pending(self) -> list[ConflictRecord]:
        """Conflicts that need a decision (zero-difference conflicts never do)."""
        return [c for c in self.conflicts if c.has_differences]


class ResolutionAction(Enum):
    KEEP_EXISTING = "keep_existing"
    USE_INCOMING = "use_incoming"

    @classmethod
    def parse(cls, value: str) -> ResolutionAction:
        v = str(value).strip().lower().replace("-", "_")
        # 旧 UI の表記 (use_excel) も受け付ける
        if v in ("use_excel", "overwrite", "incoming"):
            return cls.USE_INCOMING
        if v in ("keep", "skip", "existing"):
            return cls.KEEP_EXISTING
        return cls(v)


class ConflictPolicy(Enum):
    SKIP = "skip"
    OVERWRITE = "overwrite"
    ASK = "ask"


@dataclass(frozen=True)
class BatchDefault:
    action: ResolutionAction


@dataclass(frozen=True)
class PerConflict:
    conflict_id: str
    action: ResolutionAction


Resolution = Union[BatchDefault, PerConflict]
