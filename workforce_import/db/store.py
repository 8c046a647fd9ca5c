from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime

from ..models.record import CanonicalRecord, StoredEmployee

"""Employee store interface and in-memory implementation.

The engine only reads a snapshot for matching and then issues individual,
single-record writes. Each write is atomic on its own; a failure is raised as
RecordPersistenceError and handled per row by the resolution applier.
"""

__all__ = [
    "RecordPersistenceError",
    "EmployeeStore",
    "InMemoryEmployeeStore",
]


class RecordPersistenceError(Exception):
    """Per-record store failure (duplicate key, constraint violation, ...)."""

    def __init__(self, external_id: str, reason: str, field: str | None = None) -> None:
        self.external_id = external_id
        self.reason = reason
        self.field = field
        super().__init__(f"{external_id}: {reason}")


class EmployeeStore(ABC):
    """External, shared employee store."""

    @abstractmethod
    def snapshot(self) -> list[StoredEmployee]:
        """Every existing employee (read once per batch before resolution)."""

    @abstractmethod
    def get(self, internal_id: str) -> StoredEmployee | None: ...

    @abstractmethod
    def insert(self, record: CanonicalRecord, actor: str) -> StoredEmployee: ...

    @abstractmethod
    def overwrite(self, internal_id: str, record: CanonicalRecord, actor: str) -> StoredEmployee:
        """Full-field replacement (not a merge); refreshes audit metadata."""

    @abstractmethod
    def delete_many(self, internal_ids: Sequence[str]) -> int: ...

    def dropdown_options(self) -> dict[str, list[str]]:
        """Configurable category options (advisory; used for template lists)."""
        return {}

    def close(self) -> None:  # pragma: no cover - trivial
        pass


class InMemoryEmployeeStore(EmployeeStore):
    """Dict-backed store enforcing the same uniqueness rules as the database.

    Used by tests and as the CLI fallback when no database is reachable.
    """

    def __init__(
        self,
        employees: Iterable[StoredEmployee] = (),
        options: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self._rows: dict[str, StoredEmployee] = {}
        self._options = {k: list(v) for k, v in (options or {}).items()}
        for emp in employees:
            self._rows[emp.internal_id] = emp

    def __len__(self) -> int:
        return len(self._rows)

    def snapshot(self) -> list[StoredEmployee]:
        return list(self._rows.values())

    def get(self, internal_id: str) -> StoredEmployee | None:
        return self._rows.get(internal_id)

    def find_by_external_id(self, external_id: str) -> StoredEmployee | None:
        key = external_id.strip().lower()
        for emp in self._rows.values():
            if emp.external_id.strip().lower() == key:
                return emp
        return None

    def _check_unique(self, record: CanonicalRecord, ignore_id: str | None = None) -> None:
        ext_key = record.external_id.strip().lower()
        email_key = record.email.strip().lower()
        for emp in self._rows.values():
            if emp.internal_id == ignore_id:
                continue
            if emp.external_id.strip().lower() == ext_key:
                raise RecordPersistenceError(
                    record.external_id, "duplicate key value violates unique constraint on employee_id", "external_id"
                )
            if email_key and emp.email.strip().lower() == email_key:
                raise RecordPersistenceError(
                    record.external_id, "duplicate key value violates unique constraint on email", "email"
                )

    def insert(self, record: CanonicalRecord, actor: str) -> StoredEmployee:
        self._check_unique(record)
        now = datetime.now(UTC)
        emp = StoredEmployee(
            internal_id=uuid.uuid4().hex,
            record=record.without_row_number(),
            created_at=now,
            updated_at=now,
            last_modified_by=actor,
        )
        self._rows[emp.internal_id] = emp
        return emp

    def overwrite(self, internal_id: str, record: CanonicalRecord, actor: str) -> StoredEmployee:
        current = self._rows.get(internal_id)
        if current is None:
            raise RecordPersistenceError(record.external_id, f"employee {internal_id} no longer exists")
        self._check_unique(record, ignore_id=internal_id)
        emp = replace(
            current,
            record=record.without_row_number(),
            updated_at=datetime.now(UTC),
            last_modified_by=actor,
        )
        self._rows[internal_id] = emp
        return emp

    def delete_many(self, internal_ids: Sequence[str]) -> int:
        deleted = 0
        for iid in set(internal_ids):
            if self._rows.pop(iid, None) is not None:
                deleted += 1
        return deleted

    def dropdown_options(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self._options.items()}
