from __future__ import annotations

from ..models.batch_result import BatchResult

"""Summary line rendering.

Format:
    SUMMARY batch=<id> rows=<n> created=<n> updated=<n> skipped=<n> failed=<n> elapsed_sec=<x>
"""

__all__ = [
    "format_elapsed",
    "render_summary_line",
]


def format_elapsed(seconds: float) -> str:
    """Seconds without scientific notation or trailing zeros."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return str(round(seconds, 3))


def render_summary_line(result: BatchResult) -> str:
    """Render the SUMMARY line of one batch.

    Examples:
        >>> from datetime import datetime, timezone
        >>> r = BatchResult(batch_id="b1", total_rows=3)
        >>> r.record_created("E1", {})
        >>> r.start_time = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        >>> r.end_time = datetime(2024, 1, 1, 10, 0, 2, tzinfo=timezone.utc)
        >>> render_summary_line(r)
        'SUMMARY batch=b1 rows=3 created=1 updated=0 skipped=0 failed=0 elapsed_sec=2'
    """
    return (
        f"SUMMARY batch={result.batch_id} "
        f"rows={result.total_rows} "
        f"created={result.created_count} "
        f"updated={result.updated_count} "
        f"skipped={result.skipped_count} "
        f"failed={result.failed_count} "
        f"elapsed_sec={format_elapsed(result.elapsed_seconds)}"
    )
