# Shared pytest fixtures
from __future__ import annotations

import io
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from workforce_import.db.store import InMemoryEmployeeStore
from workforce_import.logging.init import reset_logging
from workforce_import.services.orchestrator import import_workbook

DEFAULT_HEADERS = [
    "S.No",
    "Employee ID",
    "Name",
    "Email",
    "Department",
    "Designation",
    "Client",
    "Billability Status",
    "Projects",
    "Billability %",
    "PO Start Date",
    "PO End Date",
    "Joining Date",
    "Phone Number",
    "Skills",
    "Remarks",
]


@pytest.fixture(autouse=True)
def _fresh_logging():
    # capsys 差し替え後の stdout にハンドラを張り直す
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """store: memory
conflict_resolution: skip
actor: tester
logs_directory: ./logs
timezone: UTC
dropdown_options:
  department: [Engineering, Delivery, Finance]
  billability_status: [Billable, Non-Billable, Bench]
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def employee_row() -> Callable[..., dict[str, Any]]:
    """Factory for one valid worksheet row keyed by header text."""
    counter = {"n": 0}

    def make(**overrides: Any) -> dict[str, Any]:
        counter["n"] += 1
        n = counter["n"]
        row: dict[str, Any] = {
            "S.No": n,
            "Employee ID": f"EMP{n:03d}",
            "Name": f"Employee {n}",
            "Email": f"employee{n}@example.com",
            "Department": "Engineering",
            "Designation": "Engineer",
            "Client": "Acme",
            "Billability Status": "Billable",
            "Projects": "Acme Portal",
            "Billability %": 100,
            "PO Start Date": "01-04-2024",
            "PO End Date": "31-03-2025",
            "Joining Date": "15-06-2019",
            "Phone Number": "9876543210",
            "Skills": "Python; SQL",
            "Remarks": "",
        }
        row.update(overrides)
        return row

    return make


def _workbook_bytes(rows: list[dict[str, Any]], headers: list[str] | None = None) -> bytes:
    headers = list(headers or DEFAULT_HEADERS)
    for r in rows:
        for k in r:
            if k not in headers:
                headers.append(k)
    matrix: list[list[Any]] = [headers]
    for r in rows:
        matrix.append([r.get(h, "") for h in headers])
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        pd.DataFrame(matrix).to_excel(writer, sheet_name="Employees", header=False, index=False)
    return buf.getvalue()


@pytest.fixture()
def make_workbook() -> Callable[..., bytes]:
    """Build an .xlsx (bytes) from header-keyed row dicts."""
    return _workbook_bytes


@pytest.fixture()
def write_workbook(temp_workdir: Path) -> Callable[..., Path]:
    def write(name: str, rows: list[dict[str, Any]], headers: list[str] | None = None) -> Path:
        path = temp_workdir / "data" / name
        path.write_bytes(_workbook_bytes(rows, headers))
        return path

    return write


@pytest.fixture()
def seeded_store(make_workbook) -> Callable[..., InMemoryEmployeeStore]:
    """Store pre-populated through the normal import path (same normalization as incoming rows)."""

    def seed(rows: list[dict[str, Any]]) -> InMemoryEmployeeStore:
        store = InMemoryEmployeeStore()
        result = import_workbook(make_workbook(rows), store, actor="seed", show_progress=False)
        assert result.created_count == len(rows)
        return store

    return seed
