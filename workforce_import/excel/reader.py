from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, BinaryIO

import pandas as pd

from ..models.raw_row import RawRow
from .columns import map_header, normalize_header

"""Spreadsheet reader.

- 先頭シートのみを対象とし、最初の非空行をヘッダ行、それ以降をデータ行として扱う。
- pandas の既定 NA 変換は無効化する (リテラル "NA" は日付センチネルとして保持する必要がある)。
- Employee ID / Name のどちらかが空の行は書式行とみなして黙って除外する。
"""

__all__ = [
    "MalformedWorkbookError",
    "read_workbook",
    "inspect_workbook",
]

logger = logging.getLogger(__name__)

WorkbookSource = bytes | bytearray | BinaryIO | Path | str


class MalformedWorkbookError(Exception):
    """Raised when the workbook is undecodable, empty or header-only."""


def _load_first_sheet(source: WorkbookSource) -> pd.DataFrame:
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(bytes(source))
    try:
        # ヘッダなしで生読み (ヘッダ正規化は後段で実施)
        return pd.read_excel(
            source,
            sheet_name=0,
            header=None,
            dtype=object,
            keep_default_na=False,
            na_values=[""],
        )
    except Exception as e:
        raise MalformedWorkbookError(f"cannot read workbook: {e}") from e


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):  # pragma: no cover - array-like cells
        return False


def _clean_cell(value: Any) -> Any:
    if _is_blank(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, str):
        return value.strip()
    return value


def _non_blank_rows(df: pd.DataFrame) -> list[tuple[int, list[Any]]]:
    rows: list[tuple[int, list[Any]]] = []
    for idx, raw in enumerate(df.itertuples(index=False, name=None)):
        values = list(raw)
        if all(_is_blank(v) for v in values):
            continue
        rows.append((idx + 1, values))  # worksheet 行番号 (1 始まり)
    return rows


def read_workbook(source: WorkbookSource) -> list[RawRow]:
    """Decode the first sheet of a workbook into RawRows keyed by canonical field.

    Raises:
        MalformedWorkbookError: undecodable input, or fewer than two non-blank
            rows (header + at least one data row).
    """
    df = _load_first_sheet(source)
    rows = _non_blank_rows(df)
    if len(rows) < 2:
        raise MalformedWorkbookError(
            "workbook must have at least a header row and one data row"
        )

    _, header_values = rows[0]
    keys = [map_header(normalize_header(h)) if not _is_blank(h) else "" for h in header_values]
    logger.debug("workbook header keys=%s", keys)

    result: list[RawRow] = []
    dropped = 0
    for row_number, values in rows[1:]:
        mapped: dict[str, Any] = {}
        for key, val in zip(keys, values, strict=False):
            if not key:
                continue
            cleaned = _clean_cell(val)
            # 同名列が重複した場合は最初の非空値を優先
            if key in mapped and mapped[key] is not None:
                continue
            mapped[key] = cleaned
        if _is_blank(mapped.get("external_id")) or _is_blank(mapped.get("name")):
            dropped += 1
            continue
        result.append(RawRow(row_number=row_number, values=mapped))

    if dropped:
        logger.debug("dropped %d row(s) without employee id or name", dropped)
    return result


def inspect_workbook(source: WorkbookSource, limit: int = 3) -> dict[str, Any]:
    """Header keys and first rows of the workbook (for --inspect-data)."""
    rows = read_workbook(source)
    columns: list[str] = []
    for r in rows:
        for k in r.values:
            if k not in columns:
                columns.append(k)
    sample = [
        {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in r.values.items()}
        for r in rows[:limit]
    ]
    return {"columns": columns, "rows": len(rows), "sample_rows": sample}
