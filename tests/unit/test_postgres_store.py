from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from types import SimpleNamespace

import psycopg2
import pytest

import workforce_import.db.postgres_store as ps
from workforce_import.db.postgres_store import ASSIGNMENT_COLUMNS, SCALAR_COLUMNS, PostgresEmployeeStore
from workforce_import.db.store import RecordPersistenceError
from workforce_import.models.record import CanonicalRecord


class DummyCursor:
    def __init__(self, results=None, fail_on: str | None = None, exc: Exception | None = None) -> None:
        self.results = list(results or [])
        self.executed: list[tuple[str, object]] = []
        self.rowcount = 1
        self.fail_on = fail_on
        self.exc = exc

    def execute(self, sql, params=None):
        self.executed.append((sql, params))
        if self.fail_on and sql.lstrip().startswith(self.fail_on):
            raise self.exc

    def fetchall(self):
        return self.results.pop(0) if self.results else []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class DummyConn:
    def __init__(self, cursor: DummyCursor) -> None:
        self._cursor = cursor
        self.commits = 0
        self.rollbacks = 0
        self.closed = 0

    def cursor(self):
        return self._cursor

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = 1


class UniqueViolation(psycopg2.IntegrityError):
    diag = SimpleNamespace(constraint_name="employees_email_key")


@pytest.fixture(autouse=True)
def patch_batch_insert(monkeypatch):
    calls: list[tuple] = []

    def fake_batch_insert(cursor, table, columns, rows, page_size=500):
        calls.append((table, tuple(columns), list(rows)))

    monkeypatch.setattr(ps, "batch_insert", fake_batch_insert)
    return calls


def _db_row(internal_id: str, record: CanonicalRecord) -> tuple:
    scalars = []
    for c in SCALAR_COLUMNS:
        v = getattr(record, c)
        scalars.append(Decimal(str(v)) if c in ("rate", "ctc", "allocation_percentage") else v)
    ts = datetime(2024, 1, 1, tzinfo=UTC)
    return (internal_id, *scalars, list(record.skills), ts, ts, "seed")


def test_snapshot_converts_rows():
    rec = CanonicalRecord(
        external_id="E1", name="Asha", rate=4500.5, project_end_date="SOW", skills=("Python",)
    )
    assignment = ("id-1", 0, "Portal", "Acme", Decimal("100"), "01-04-2024", "SOW", "Dev", "PO-1", "Monthly", Decimal("4500"))
    assert len(assignment) == len(ASSIGNMENT_COLUMNS)
    cur = DummyCursor(results=[[_db_row("id-1", rec)], [assignment]])
    conn = DummyConn(cur)

    employees = PostgresEmployeeStore(conn).snapshot()

    assert len(employees) == 1
    emp = employees[0]
    assert emp.internal_id == "id-1"
    assert emp.record.rate == 4500.5
    assert isinstance(emp.record.rate, float)
    assert emp.record.project_end_date == "SOW"
    assert emp.record.skills == ("Python",)
    assert emp.record.project_assignments[0].project_name == "Portal"
    assert emp.record.project_assignments[0].allocation_percentage == 100.0
    assert emp.last_modified_by == "seed"
    assert conn.commits == 1


def test_insert_writes_employee_and_assignments(patch_batch_insert):
    from workforce_import.models.record import ProjectAssignment

    rec = CanonicalRecord(
        external_id="E1",
        name="Asha",
        project_assignments=(ProjectAssignment("Portal", "Acme"), ProjectAssignment("Data", "Acme", 0.0)),
    )
    cur = DummyCursor()
    conn = DummyConn(cur)
    store = PostgresEmployeeStore(conn)
    # get() 後読みの結果
    cur.results = [[_db_row("will-be-replaced", rec)], []]

    store.insert(rec, "alice")

    insert_sql, params = cur.executed[0]
    assert insert_sql.startswith("INSERT INTO employees")
    assert params[-1] == "alice"
    assert params[1] == "E1"
    table, columns, rows = patch_batch_insert[0]
    assert table == "employee_projects"
    assert columns == ASSIGNMENT_COLUMNS
    assert [r[1] for r in rows] == [0, 1]
    assert conn.commits >= 1
    assert conn.rollbacks == 0


def test_insert_integrity_error_becomes_persistence_error():
    cur = DummyCursor(fail_on="INSERT INTO employees", exc=UniqueViolation("duplicate key value"))
    conn = DummyConn(cur)
    with pytest.raises(RecordPersistenceError) as e:
        PostgresEmployeeStore(conn).insert(CanonicalRecord(external_id="E1", name="A"), "x")
    assert e.value.field == "email"
    assert "duplicate key value" in e.value.reason
    assert conn.rollbacks == 1
    assert conn.commits == 0


def test_overwrite_missing_row_raises():
    cur = DummyCursor()
    cur.rowcount = 0
    conn = DummyConn(cur)
    with pytest.raises(RecordPersistenceError) as e:
        PostgresEmployeeStore(conn).overwrite("gone", CanonicalRecord(external_id="E1", name="A"), "x")
    assert "no longer exists" in e.value.reason
    assert conn.rollbacks == 1


def test_overwrite_replaces_assignments(patch_batch_insert):
    rec = CanonicalRecord(external_id="E1", name="A")
    cur = DummyCursor(results=[[_db_row("id-1", rec)], []])
    conn = DummyConn(cur)
    PostgresEmployeeStore(conn).overwrite("id-1", rec, "bob")
    sqls = [s for s, _ in cur.executed]
    assert sqls[0].startswith("UPDATE employees SET")
    assert sqls[1].startswith("DELETE FROM employee_projects")
    assert cur.executed[0][1][-2:] == ["bob", "id-1"]


def test_delete_many_and_dropdown_options():
    cur = DummyCursor(results=[[("department", "Eng"), ("department", "Ops"), ("location", "Pune")]])
    cur.rowcount = 2
    conn = DummyConn(cur)
    store = PostgresEmployeeStore(conn)
    assert store.delete_many(["a", "b", "c"]) == 2
    assert cur.executed[0][1] == (["a", "b", "c"],)
    assert store.dropdown_options() == {"department": ["Eng", "Ops"], "location": ["Pune"]}
    assert conn.commits == 2


def test_insert_unexpected_error_rolls_back(patch_batch_insert, monkeypatch):
    def broken_batch_insert(cursor, table, columns, rows, page_size=500):
        raise TypeError("can't adapt type 'dict'")

    monkeypatch.setattr(ps, "batch_insert", broken_batch_insert)
    conn = DummyConn(DummyCursor())
    with pytest.raises(TypeError):
        PostgresEmployeeStore(conn).insert(CanonicalRecord(external_id="E1", name="A"), "bob")
    assert conn.commits == 0
    assert conn.rollbacks == 1


def test_overwrite_unexpected_error_rolls_back():
    cur = DummyCursor(fail_on="DELETE", exc=KeyError("position"))
    conn = DummyConn(cur)
    with pytest.raises(KeyError):
        PostgresEmployeeStore(conn).overwrite("id-1", CanonicalRecord(external_id="E1", name="A"), "bob")
    assert conn.commits == 0
    assert conn.rollbacks == 1


def test_ensure_schema_runs_bundled_ddl():
    cur = DummyCursor()
    conn = DummyConn(cur)
    PostgresEmployeeStore(conn).ensure_schema()
    [(sql, _params)] = cur.executed
    assert sql == ps.SCHEMA_PATH.read_text(encoding="utf-8")
    assert "CREATE TABLE IF NOT EXISTS employees" in sql
    assert conn.commits == 1
