from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from psycopg2.extras import execute_values

"""Multi-row INSERT for child rows (employee_projects).

An employee's assignments are written in one round trip on the cursor of the
employee's own transaction; commit / rollback stay with the caller.
"""

__all__ = [
    "BatchInsertError",
    "batch_insert",
]

DEFAULT_PAGE_SIZE = 500


class BatchInsertError(Exception):
    """Driver failure while inserting a batch of child rows."""

    def __init__(self, table: str, row_count: int, reason: str) -> None:
        self.table = table
        self.row_count = row_count
        self.reason = reason
        super().__init__(f"insert into {table} failed ({row_count} row(s)): {reason}")


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    page_size: int = DEFAULT_PAGE_SIZE,
) -> int:
    """Insert ``rows`` with execute_values and return how many were sent.

    ``table`` / ``columns`` come from module constants, never from workbook
    input. 空の rows は DB に触れずに 0 を返す。
    """
    values = [tuple(r) for r in rows]
    if not values:
        return 0

    column_list = ", ".join(f'"{c}"' for c in columns)
    statement = f"INSERT INTO {table} ({column_list}) VALUES %s"
    try:
        execute_values(cursor, statement, values, page_size=page_size)
    except Exception as e:
        raise BatchInsertError(table, len(values), str(e)) from e
    return len(values)
