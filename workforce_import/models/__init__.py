"""Domain models for the workforce bulk importer.

Raw rows, canonical records, conflicts/resolutions and batch results shared by
the reader, normalizer, validator, conflict detector and resolution applier.
"""

from .batch_result import ApplyState, BatchResult, RowError
from .conflict import (
    BatchDefault,
    ConflictKind,
    ConflictPolicy,
    ConflictRecord,
    DetectionResult,
    FieldDifference,
    PerConflict,
    Resolution,
    ResolutionAction,
)
from .error_record import ErrorRecord
from .raw_row import NormalizedRow, RawRow
from .record import CanonicalRecord, ProjectAssignment, StoredEmployee

__all__ = [
    # Row models
    "RawRow",
    "NormalizedRow",
    "CanonicalRecord",
    "ProjectAssignment",
    "StoredEmployee",
    # Conflict models
    "ConflictKind",
    "FieldDifference",
    "ConflictRecord",
    "DetectionResult",
    "ResolutionAction",
    "ConflictPolicy",
    "BatchDefault",
    "PerConflict",
    "Resolution",
    # Results
    "ApplyState",
    "BatchResult",
    "RowError",
    "ErrorRecord",
]
