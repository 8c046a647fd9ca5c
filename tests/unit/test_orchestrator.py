from __future__ import annotations

import json
import re
from pathlib import Path

import pytest

from workforce_import.db.store import InMemoryEmployeeStore, RecordPersistenceError
from workforce_import.excel.reader import MalformedWorkbookError
from workforce_import.models.conflict import ConflictPolicy, PerConflict, ResolutionAction
from workforce_import.services.orchestrator import (
    ProcessingError,
    import_workbook,
    mass_delete,
    new_batch_id,
    prepare_batch,
)
from workforce_import.services.resolution import ConflictRequiresResolutionError
from workforce_import.services.validator import ValidationError


def test_new_batch_id_format():
    batch_id = new_batch_id("Asia/Kolkata")
    assert re.fullmatch(r"\d{8}-\d{6}-[0-9a-f]{6}", batch_id)
    assert new_batch_id() != new_batch_id()


def test_prepare_batch_has_no_side_effects(seeded_store, employee_row, make_workbook):
    store = seeded_store([employee_row()])
    before = store.snapshot()
    session = prepare_batch(
        make_workbook([employee_row(**{"Employee ID": "EMP001", "Designation": "Lead"}), employee_row()]),
        store,
        batch_id="b-1",
        show_progress=False,
    )
    assert session.batch_id == "b-1"
    assert len(session.records) == 2
    assert [c.conflict_id for c in session.pending_conflicts] == ["conflict-0"]
    assert not session.committed
    assert store.snapshot() == before


def test_import_workbook_creates_records(employee_row, make_workbook):
    store = InMemoryEmployeeStore()
    result = import_workbook(make_workbook([employee_row(), employee_row()]), store, show_progress=False)
    assert result.created_count == 2
    assert result.total_rows == 2
    assert result.end_time is not None
    assert len(store) == 2
    assert store.find_by_external_id("emp002").last_modified_by == "importer"


def test_malformed_workbook_is_rejected():
    with pytest.raises(MalformedWorkbookError):
        import_workbook(b"not a workbook", InMemoryEmployeeStore(), show_progress=False)


def test_validation_error_aborts_before_writes(employee_row, make_workbook):
    store = InMemoryEmployeeStore()
    wb = make_workbook([employee_row(), employee_row(Email="broken-email")])
    with pytest.raises(ValidationError) as e:
        import_workbook(wb, store, show_progress=False)
    assert len(store) == 0
    assert e.value.messages[0].startswith("Row 3: Invalid email format")


def test_ask_policy_suspends_with_session(seeded_store, employee_row, make_workbook):
    store = seeded_store([employee_row()])
    wb = make_workbook([employee_row(**{"Employee ID": "EMP001", "Department": "Finance"})])
    with pytest.raises(ConflictRequiresResolutionError) as e:
        import_workbook(wb, store, policy=ConflictPolicy.ASK, show_progress=False)
    session = e.value.session
    assert session is not None
    assert not session.committed
    assert [c.conflict_id for c in e.value.pending] == ["conflict-0"]

    result = session.commit(
        ConflictPolicy.ASK,
        [PerConflict("conflict-0", ResolutionAction.USE_INCOMING)],
        actor="reviewer",
    )
    assert result.updated_count == 1
    stored = store.find_by_external_id("EMP001")
    assert stored.record.department == "Finance"
    assert stored.last_modified_by == "reviewer"


def test_commit_twice_raises(employee_row, make_workbook):
    session = prepare_batch(make_workbook([employee_row()]), InMemoryEmployeeStore(), show_progress=False)
    session.commit(ConflictPolicy.SKIP)
    assert session.committed
    with pytest.raises(ProcessingError):
        session.commit(ConflictPolicy.SKIP)


def test_unknown_conflict_id_raises(employee_row, make_workbook):
    session = prepare_batch(make_workbook([employee_row()]), InMemoryEmployeeStore(), show_progress=False)
    with pytest.raises(ValueError):
        session.commit(ConflictPolicy.SKIP, [PerConflict("conflict-9", ResolutionAction.USE_INCOMING)])
    assert not session.committed


class FlakyStore(InMemoryEmployeeStore):
    def __init__(self, failing_id: str) -> None:
        super().__init__()
        self.failing_id = failing_id

    def insert(self, record, actor):
        if record.external_id == self.failing_id:
            raise RecordPersistenceError(record.external_id, "value too long for type character varying(20)")
        return super().insert(record, actor)


def test_row_failures_are_written_to_error_log(employee_row, make_workbook, tmp_path: Path):
    store = FlakyStore("EMP002")
    logs_dir = tmp_path / "logs"
    wb = make_workbook([employee_row(), employee_row(), employee_row()])
    result = import_workbook(wb, store, batch_id="b-err", logs_dir=logs_dir, show_progress=False)

    assert result.created_count == 2
    assert result.failed_count == 1
    files = list(logs_dir.glob("errors-*.log"))
    assert len(files) == 1
    entry = json.loads(files[0].read_text(encoding="utf-8").strip())
    assert entry["batch"] == "b-err"
    assert entry["row"] == 3
    assert entry["external_id"] == "EMP002"
    assert entry["error_type"] == "PERSISTENCE_ERROR"


def test_no_error_log_without_failures(employee_row, make_workbook, tmp_path: Path):
    logs_dir = tmp_path / "logs"
    import_workbook(make_workbook([employee_row()]), InMemoryEmployeeStore(), logs_dir=logs_dir, show_progress=False)
    assert not logs_dir.exists()


def test_mass_delete(seeded_store, employee_row):
    store = seeded_store([employee_row(), employee_row()])
    target = store.find_by_external_id("EMP001").internal_id
    assert mass_delete(store, [target, "missing-id"]) == 1
    assert len(store) == 1


def test_mass_delete_requires_ids():
    with pytest.raises(ProcessingError):
        mass_delete(InMemoryEmployeeStore(), ["", ""])
