from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

from ..db.store import EmployeeStore, RecordPersistenceError
from ..models.batch_result import ApplyState, BatchResult, RowError
from ..models.conflict import (
    BatchDefault,
    ConflictPolicy,
    ConflictRecord,
    DetectionResult,
    PerConflict,
    Resolution,
    ResolutionAction,
)
from .progress import ProgressTracker

if TYPE_CHECKING:
    from .orchestrator import ImportSession

"""Resolution flattening and the resolution applier.

The applier never branches on the conflict policy: by the time it runs every
conflict has exactly one ResolutionAction (see flatten_resolutions). Each write
is isolated; a failing record becomes a RowError and the batch continues.
"""

__all__ = [
    "ConflictRequiresResolutionError",
    "policy_resolutions",
    "flatten_resolutions",
    "apply_batch",
]

logger = logging.getLogger(__name__)

SKIP_NO_DIFFERENCES = "no field differences"
SKIP_KEPT_EXISTING = "kept existing record"


class ConflictRequiresResolutionError(Exception):
    """Conflicts with real differences still need a decision (not fatal).

    ``session`` is set by the orchestrator so that a caller can collect the
    decisions and commit without re-reading the workbook.
    """

    def __init__(self, pending: Sequence[ConflictRecord], session: ImportSession | None = None) -> None:
        self.pending = list(pending)
        self.session = session
        super().__init__(f"{len(self.pending)} conflict(s) require resolution")


def policy_resolutions(policy: ConflictPolicy) -> list[Resolution]:
    """Translate a batch-wide conflict policy into resolutions (ASK yields none)."""
    if policy is ConflictPolicy.SKIP:
        return [BatchDefault(ResolutionAction.KEEP_EXISTING)]
    if policy is ConflictPolicy.OVERWRITE:
        return [BatchDefault(ResolutionAction.USE_INCOMING)]
    return []


def flatten_resolutions(
    conflicts: Sequence[ConflictRecord],
    resolutions: Iterable[Resolution],
) -> dict[str, ResolutionAction]:
    """Reduce the resolution union to one action per conflict id.

    - conflicts without differences always keep the existing record
    - a PerConflict entry overrides the BatchDefault
    - the last BatchDefault wins when several are given

    Raises:
        ValueError: a PerConflict names an unknown conflict id.
        ConflictRequiresResolutionError: conflicts with differences remain undecided.
    """
    known = {c.conflict_id for c in conflicts}
    default: ResolutionAction | None = None
    per_conflict: dict[str, ResolutionAction] = {}
    for res in resolutions:
        if isinstance(res, BatchDefault):
            default = res.action
        elif isinstance(res, PerConflict):
            if res.conflict_id not in known:
                raise ValueError(f"unknown conflict id: {res.conflict_id}")
            per_conflict[res.conflict_id] = res.action
        else:  # pragma: no cover - type guard
            raise TypeError(f"unsupported resolution: {res!r}")

    actions: dict[str, ResolutionAction] = {}
    undecided: list[ConflictRecord] = []
    for conflict in conflicts:
        if not conflict.has_differences:
            # 差分なし → 自動解決 (既存維持)
            actions[conflict.conflict_id] = ResolutionAction.KEEP_EXISTING
            continue
        action = per_conflict.get(conflict.conflict_id, default)
        if action is None:
            undecided.append(conflict)
            continue
        actions[conflict.conflict_id] = action

    if undecided:
        raise ConflictRequiresResolutionError(undecided)
    return actions


def _summary_of(record: Any) -> dict[str, Any]:
    return {
        "row": record.row_number,
        "name": record.name,
        "email": record.email,
    }


def _record_failure(
    result: BatchResult,
    row_number: int,
    external_id: str,
    message: str,
    field: str | None,
    error_type: str,
) -> None:
    result.row_states[row_number] = ApplyState.FAILED
    result.record_error(
        RowError(
            row_number=row_number,
            external_id=external_id,
            message=message,
            field=field,
            error_type=error_type,
        )
    )
    logger.warning("row=%d employee_id=%s %s: %s", row_number, external_id, error_type, message)


def apply_batch(
    store: EmployeeStore,
    detection: DetectionResult,
    actions: dict[str, ResolutionAction],
    actor: str,
    batch_id: str = "",
    *,
    show_progress: bool = True,
) -> BatchResult:
    """Apply clean inserts and resolved conflicts one record at a time.

    Never raises for a per-record failure; the failure is recorded in the
    returned BatchResult and the remaining records are still applied. The
    final per-row state is kept in ``BatchResult.row_states``.
    """
    result = BatchResult(
        batch_id=batch_id,
        total_rows=len(detection.clean_inserts) + len(detection.conflicts),
    )
    states = result.row_states
    for rec in detection.clean_inserts:
        states[rec.row_number] = ApplyState.RESOLVED
    for conflict in detection.conflicts:
        states[conflict.row_number] = (
            ApplyState.RESOLVED if conflict.conflict_id in actions else ApplyState.PENDING
        )

    tracker = ProgressTracker(result.total_rows, description="Applying records") if show_progress else None
    try:
        for rec in detection.clean_inserts:
            try:
                store.insert(rec, actor)
            except RecordPersistenceError as e:
                _record_failure(result, rec.row_number, rec.external_id, e.reason, e.field, "PERSISTENCE_ERROR")
            except Exception as e:  # 想定外の例外も行単位で隔離
                _record_failure(result, rec.row_number, rec.external_id, str(e), None, "UNEXPECTED_ERROR")
            else:
                states[rec.row_number] = ApplyState.APPLIED
                result.record_created(rec.external_id, _summary_of(rec))
            if tracker is not None:
                tracker.advance(result)

        for conflict in detection.conflicts:
            rec = conflict.incoming
            action = actions.get(conflict.conflict_id)
            if action is None:
                _record_failure(
                    result,
                    conflict.row_number,
                    rec.external_id,
                    f"no resolution for {conflict.conflict_id}",
                    None,
                    "UNRESOLVED_CONFLICT",
                )
            elif action is ResolutionAction.KEEP_EXISTING:
                reason = SKIP_KEPT_EXISTING if conflict.has_differences else SKIP_NO_DIFFERENCES
                states[conflict.row_number] = ApplyState.APPLIED
                result.record_skipped(rec.external_id, reason)
            else:
                try:
                    store.overwrite(conflict.existing.internal_id, rec, actor)
                except RecordPersistenceError as e:
                    _record_failure(
                        result, conflict.row_number, rec.external_id, e.reason, e.field, "PERSISTENCE_ERROR"
                    )
                except Exception as e:
                    _record_failure(
                        result, conflict.row_number, rec.external_id, str(e), None, "UNEXPECTED_ERROR"
                    )
                else:
                    states[conflict.row_number] = ApplyState.APPLIED
                    result.record_updated(
                        rec.external_id,
                        {**_summary_of(rec), "fields": [d.field for d in conflict.differences]},
                    )
            if tracker is not None:
                tracker.advance(result)
    finally:
        if tracker is not None:
            tracker.close()

    logger.debug(
        "applied batch=%s states=%s",
        batch_id,
        result.state_counts(),
    )
    return result.finish()
