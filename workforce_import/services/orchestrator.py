from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from ..db.store import EmployeeStore
from ..excel.reader import WorkbookSource, read_workbook
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.batch_result import BatchResult
from ..models.conflict import ConflictPolicy, ConflictRecord, DetectionResult, Resolution
from ..models.record import CanonicalRecord
from .conflicts import detect_conflicts
from .normalizer import normalize_rows
from .resolution import ConflictRequiresResolutionError, apply_batch, flatten_resolutions, policy_resolutions
from .validator import validate_batch

"""Import pipeline orchestration (one batch = one unit of work).

Reader -> Normalizer -> Validator -> snapshot read -> Conflict Detector
-> (suspension while conflicts are resolved) -> Resolution Applier.

Structural and validation failures abort before any store write. After that
point every record is applied on its own; there is no batch-wide rollback.
"""

__all__ = [
    "ProcessingError",
    "ImportSession",
    "new_batch_id",
    "prepare_batch",
    "import_workbook",
    "mass_delete",
]

logger = logging.getLogger(__name__)


class ProcessingError(Exception):
    """Misuse of the pipeline (empty delete, double commit, ...)."""


def new_batch_id(timezone: str = "UTC") -> str:
    stamp = datetime.now(ZoneInfo(timezone)).strftime("%Y%m%d-%H%M%S")
    return f"{stamp}-{uuid.uuid4().hex[:6]}"


@dataclass
class ImportSession:
    """A parsed, validated and conflict-checked batch awaiting commit.

    Holds the normalized records across the interactive suspension so that the
    workbook is never parsed twice.
    """
    batch_id: str
    store: EmployeeStore
    records: list[CanonicalRecord]
    detection: DetectionResult
    source_name: str = ""
    logs_dir: Path | None = None
    show_progress: bool = True
    result: BatchResult | None = field(default=None, init=False)

    @property
    def conflicts(self) -> list[ConflictRecord]:
        return self.detection.conflicts

    @property
    def pending_conflicts(self) -> list[ConflictRecord]:
        return self.detection.pending

    @property
    def committed(self) -> bool:
        return self.result is not None

    def commit(
        self,
        policy: ConflictPolicy = ConflictPolicy.ASK,
        resolutions: Iterable[Resolution] = (),
        actor: str = "importer",
    ) -> BatchResult:
        """Flatten the resolutions and apply the batch exactly once.

        Raises:
            ProcessingError: the session was already committed.
            ConflictRequiresResolutionError: conflicts remain undecided
                (nothing has been written in that case).
            ValueError: a resolution names an unknown conflict id.
        """
        if self.result is not None:
            raise ProcessingError(f"batch {self.batch_id} already committed")

        combined = [*policy_resolutions(policy), *resolutions]
        try:
            actions = flatten_resolutions(self.detection.conflicts, combined)
        except ConflictRequiresResolutionError as e:
            e.session = self
            raise

        result = apply_batch(
            self.store,
            self.detection,
            actions,
            actor,
            batch_id=self.batch_id,
            show_progress=self.show_progress,
        )
        self.result = result
        self._write_error_log(result)
        logger.info(
            "batch=%s source=%s created=%d updated=%d skipped=%d failed=%d",
            self.batch_id,
            self.source_name or "-",
            result.created_count,
            result.updated_count,
            result.skipped_count,
            result.failed_count,
        )
        return result

    def _write_error_log(self, result: BatchResult) -> None:
        if not result.errors:
            return
        error_log = ErrorLogBuffer(self.logs_dir)
        for err in result.errors:
            error_log.append(ErrorRecord.from_row_error(self.batch_id, err))
        # エラーログ書き込み失敗でバッチ自体は失敗させない
        try:
            path = error_log.flush()
        except OSError as e:
            logger.warning("could not write error log: %s", e)
        else:
            logger.info("error log written: %s", path)


def prepare_batch(
    source: WorkbookSource,
    store: EmployeeStore,
    *,
    source_name: str = "",
    batch_id: str | None = None,
    logs_dir: Path | None = None,
    show_progress: bool = True,
) -> ImportSession:
    """Parse, normalize, validate and conflict-check a workbook (no writes).

    Raises:
        MalformedWorkbookError: undecodable / empty / header-only workbook.
        ValidationError: any row violates a batch rule.
    """
    batch_id = batch_id or new_batch_id()
    raw_rows = read_workbook(source)
    logger.info("batch=%s read %d row(s) from %s", batch_id, len(raw_rows), source_name or "workbook")

    normalized = normalize_rows(raw_rows)
    records = validate_batch(normalized)

    existing = store.snapshot()
    detection = detect_conflicts(records, existing)
    logger.info(
        "batch=%s clean=%d conflicts=%d pending=%d",
        batch_id,
        len(detection.clean_inserts),
        len(detection.conflicts),
        len(detection.pending),
    )
    return ImportSession(
        batch_id=batch_id,
        store=store,
        records=records,
        detection=detection,
        source_name=source_name,
        logs_dir=logs_dir,
        show_progress=show_progress,
    )


def import_workbook(
    source: WorkbookSource,
    store: EmployeeStore,
    policy: ConflictPolicy = ConflictPolicy.SKIP,
    resolutions: Iterable[Resolution] = (),
    actor: str = "importer",
    **session_options: object,
) -> BatchResult:
    """prepare_batch + commit in one call.

    Raises:
        ConflictRequiresResolutionError: ASK policy (or no covering default)
            left conflicts undecided; ``error.session`` can be committed later.
    """
    session = prepare_batch(source, store, **session_options)  # type: ignore[arg-type]
    return session.commit(policy, resolutions, actor)


def mass_delete(store: EmployeeStore, internal_ids: Sequence[str]) -> int:
    """Delete the given employees; returns the number actually removed."""
    ids = [i for i in internal_ids if i]
    if not ids:
        raise ProcessingError("no employee ids given for deletion")
    deleted = store.delete_many(ids)
    logger.info("deleted %d of %d requested employee(s)", deleted, len(ids))
    return deleted
