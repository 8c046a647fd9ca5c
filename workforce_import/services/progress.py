from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

if TYPE_CHECKING:
    from ..models.batch_result import BatchResult

"""Progress display service with tqdm (TTY only).

One bar per batch while records are applied. In non-TTY environments (CI,
piped output) the bar is disabled so that log lines stay free of ANSI control
sequences.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """True if stdout is a TTY and progress should be displayed."""
    return sys.stdout.isatty()


class ProgressTracker:
    """Record-level progress bar for the resolution applier."""

    def __init__(self, total_records: int, *, description: str = "Applying records") -> None:
        self.total_records = total_records
        self.description = description
        self.current = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_records,
                desc=description,
                unit="row",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def advance(self, result: BatchResult | None = None) -> None:
        """Count one processed record; refreshes the created/updated/skipped/failed postfix."""
        self.current += 1
        if self.enabled and self.pbar is not None:
            self.pbar.update(1)
            if result is not None:
                self.pbar.set_postfix(
                    created=result.created_count,
                    updated=result.updated_count,
                    skipped=result.skipped_count,
                    failed=result.failed_count,
                )

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
