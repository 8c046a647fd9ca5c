from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from decimal import Decimal
from pathlib import Path
from typing import Any

import psycopg2

from ..models.record import RECORD_FIELDS, CanonicalRecord, ProjectAssignment, StoredEmployee
from .batch_insert import BatchInsertError, batch_insert
from .store import EmployeeStore, RecordPersistenceError

"""PostgreSQL employee store (psycopg2).

Every write runs in its own transaction (COMMIT on success, ROLLBACK on
failure) so one failing row never leaves partial state and never affects its
siblings. Driver errors are translated to RecordPersistenceError.
"""

__all__ = [
    "PostgresEmployeeStore",
    "SCHEMA_PATH",
]

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

SCALAR_COLUMNS: tuple[str, ...] = tuple(
    f for f in RECORD_FIELDS if f not in ("skills", "project_assignments")
)
ASSIGNMENT_COLUMNS: tuple[str, ...] = (
    "employee_id",
    "position",
    "project_name",
    "client",
    "allocation_percentage",
    "start_date",
    "end_date",
    "role",
    "po_number",
    "billing",
    "billing_rate",
)
_FLOAT_COLUMNS = frozenset({"allocation_percentage", "rate", "ctc"})

# unique index 名 -> フィールド名
_CONSTRAINT_FIELDS = {
    "employees_external_id_key": "external_id",
    "employees_email_key": "email",
}


def _to_python(column: str, value: Any) -> Any:
    if value is None:
        return 0.0 if column in _FLOAT_COLUMNS else ("" if column not in ("ageing_days", "bench_days") else 0)
    if isinstance(value, Decimal):
        return float(value)
    return value


class PostgresEmployeeStore(EmployeeStore):
    def __init__(self, connection: Any) -> None:
        self._conn = connection

    def ensure_schema(self) -> None:
        sql = SCHEMA_PATH.read_text(encoding="utf-8")
        with self._conn.cursor() as cur:
            cur.execute(sql)
        self._conn.commit()

    # -- reads -------------------------------------------------------------

    def _load_assignments(self, cur: Any, ids: Sequence[str] | None = None) -> dict[str, list[ProjectAssignment]]:
        cols = ",".join(ASSIGNMENT_COLUMNS)
        if ids is None:
            cur.execute(f"SELECT {cols} FROM employee_projects ORDER BY employee_id, position")
        else:
            cur.execute(
                f"SELECT {cols} FROM employee_projects WHERE employee_id = ANY(%s) ORDER BY employee_id, position",
                (list(ids),),
            )
        grouped: dict[str, list[ProjectAssignment]] = {}
        for row in cur.fetchall():
            data = dict(zip(ASSIGNMENT_COLUMNS, row, strict=True))
            employee_id = data.pop("employee_id")
            data.pop("position")
            for k in ("allocation_percentage", "billing_rate"):
                data[k] = float(data[k])
            grouped.setdefault(employee_id, []).append(ProjectAssignment(**data))
        return grouped

    def _rows_to_employees(self, rows: list[tuple[Any, ...]], assignments: dict[str, list[ProjectAssignment]]) -> list[StoredEmployee]:
        employees = []
        for row in rows:
            internal_id = row[0]
            scalars = {c: _to_python(c, v) for c, v in zip(SCALAR_COLUMNS, row[1 : 1 + len(SCALAR_COLUMNS)], strict=True)}
            skills, created_at, updated_at, modified_by = row[1 + len(SCALAR_COLUMNS) :]
            record = CanonicalRecord(
                **scalars,
                skills=tuple(skills or ()),
                project_assignments=tuple(assignments.get(internal_id, ())),
            )
            employees.append(
                StoredEmployee(
                    internal_id=internal_id,
                    record=record,
                    created_at=created_at,
                    updated_at=updated_at,
                    last_modified_by=modified_by,
                )
            )
        return employees

    def _select_sql(self) -> str:
        cols = ",".join(SCALAR_COLUMNS)
        return f"SELECT id,{cols},skills,created_at,updated_at,last_modified_by FROM employees"

    def snapshot(self) -> list[StoredEmployee]:
        with self._conn.cursor() as cur:
            cur.execute(self._select_sql() + " ORDER BY created_at, id")
            rows = cur.fetchall()
            assignments = self._load_assignments(cur)
        self._conn.commit()  # 読み取りトランザクション終了
        logger.debug("snapshot loaded employees=%d", len(rows))
        return self._rows_to_employees(rows, assignments)

    def get(self, internal_id: str) -> StoredEmployee | None:
        with self._conn.cursor() as cur:
            cur.execute(self._select_sql() + " WHERE id = %s", (internal_id,))
            rows = cur.fetchall()
            assignments = self._load_assignments(cur, [internal_id]) if rows else {}
        self._conn.commit()
        found = self._rows_to_employees(rows, assignments)
        return found[0] if found else None

    # -- writes ------------------------------------------------------------

    def _write_assignments(self, cur: Any, internal_id: str, record: CanonicalRecord) -> None:
        rows = [
            (
                internal_id,
                pos,
                a.project_name,
                a.client,
                a.allocation_percentage,
                a.start_date,
                a.end_date,
                a.role,
                a.po_number,
                a.billing,
                a.billing_rate,
            )
            for pos, a in enumerate(record.project_assignments)
        ]
        batch_insert(cur, "employee_projects", ASSIGNMENT_COLUMNS, rows)

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except Exception:  # pragma: no cover - connection already broken
            logger.debug("rollback failed", exc_info=True)

    def _fail(self, record: CanonicalRecord, exc: Exception) -> RecordPersistenceError:
        self._rollback()
        field = None
        diag = getattr(exc, "diag", None)
        constraint = getattr(diag, "constraint_name", None) if diag is not None else None
        if constraint:
            field = _CONSTRAINT_FIELDS.get(constraint)
        message = (getattr(exc, "pgerror", None) or str(exc)).strip()
        return RecordPersistenceError(record.external_id, message, field)

    def _record_params(self, record: CanonicalRecord) -> list[Any]:
        return [getattr(record, c) for c in SCALAR_COLUMNS] + [list(record.skills)]

    def insert(self, record: CanonicalRecord, actor: str) -> StoredEmployee:
        internal_id = uuid.uuid4().hex
        cols = ",".join(("id",) + SCALAR_COLUMNS + ("skills", "last_modified_by"))
        placeholders = ",".join(["%s"] * (len(SCALAR_COLUMNS) + 3))
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    f"INSERT INTO employees ({cols}) VALUES ({placeholders})",
                    [internal_id, *self._record_params(record), actor],
                )
                self._write_assignments(cur, internal_id, record)
            self._conn.commit()
        except (psycopg2.Error, BatchInsertError) as e:
            raise self._fail(record, e.__cause__ if isinstance(e, BatchInsertError) and e.__cause__ else e) from e
        except Exception:
            # 未コミットの行を共有接続に残さない
            self._rollback()
            raise
        stored = self.get(internal_id)
        if stored is None:  # pragma: no cover - concurrent delete right after insert
            raise RecordPersistenceError(record.external_id, "inserted row disappeared")
        return stored

    def overwrite(self, internal_id: str, record: CanonicalRecord, actor: str) -> StoredEmployee:
        assignments = ",".join(f"{c} = %s" for c in SCALAR_COLUMNS + ("skills",))
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    f"UPDATE employees SET {assignments}, updated_at = now(), last_modified_by = %s WHERE id = %s",
                    [*self._record_params(record), actor, internal_id],
                )
                if cur.rowcount == 0:
                    raise RecordPersistenceError(record.external_id, f"employee {internal_id} no longer exists")
                cur.execute("DELETE FROM employee_projects WHERE employee_id = %s", (internal_id,))
                self._write_assignments(cur, internal_id, record)
            self._conn.commit()
        except (psycopg2.Error, BatchInsertError) as e:
            raise self._fail(record, e.__cause__ if isinstance(e, BatchInsertError) and e.__cause__ else e) from e
        except Exception:
            # 未コミットの行を共有接続に残さない
            self._rollback()
            raise
        stored = self.get(internal_id)
        if stored is None:  # pragma: no cover
            raise RecordPersistenceError(record.external_id, "updated row disappeared")
        return stored

    def delete_many(self, internal_ids: Sequence[str]) -> int:
        with self._conn.cursor() as cur:
            cur.execute("DELETE FROM employees WHERE id = ANY(%s)", (list(internal_ids),))
            deleted = cur.rowcount
        self._conn.commit()
        return deleted

    def dropdown_options(self) -> dict[str, list[str]]:
        options: dict[str, list[str]] = {}
        with self._conn.cursor() as cur:
            cur.execute(
                "SELECT category, value FROM dropdown_options WHERE is_active ORDER BY category, sort_order, value"
            )
            for category, value in cur.fetchall():
                options.setdefault(category, []).append(value)
        self._conn.commit()
        return options

    def close(self) -> None:
        self._conn.close()
