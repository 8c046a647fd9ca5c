from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .batch_result import RowError

"""ErrorRecord model for the JSON Lines error log.

One line per failed row (or per batch-level failure with row=-1). The key set is
fixed; consumers rely on it for row-level retry tooling.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        batch: Batch identifier the row belongs to
        row: Worksheet row number. Use -1 for batch-level errors
        external_id: Employee identifier of the row ('' when unknown)
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Store error message or validation description
    """
    timestamp: str  # ISO8601 UTC
    batch: str
    row: int  # 行番号。不明な場合 -1 許容
    external_id: str
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(batch: str, row: int, external_id: str, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            batch=batch,
            row=row,
            external_id=external_id,
            error_type=error_type,
            message=message,
        )

    @classmethod
    def from_row_error(cls, batch: str, error: RowError) -> ErrorRecord:
        message = error.message if error.field is None else f"{error.field}: {error.message}"
        return cls.create(batch, error.row_number, error.external_id, error.error_type, message)

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
