from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .record import CanonicalRecord

"""RawRow / NormalizedRow models.

RawRow is the loosely typed shape produced by the spreadsheet reader
(canonical key -> untyped cell value). NormalizedRow pairs it with the
strictly typed CanonicalRecord built by the normalizer so the validator can
inspect the original cell text (e.g. out-of-range numbers that the normalizer
already clamped). Both are discarded once the batch has been validated.
"""

__all__ = [
    "RawRow",
    "NormalizedRow",
]


@dataclass(frozen=True)
class RawRow:
    """One data row of the first worksheet after header mapping.

    row_number は worksheet 上の行番号 (ヘッダ行 = 1, 最初のデータ行 = 2)。
    """
    row_number: int
    values: dict[str, Any]  # canonical key -> cell value (str | int | float | datetime | None)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


@dataclass(frozen=True)
class NormalizedRow:
    row_number: int
    raw: RawRow
    record: CanonicalRecord
