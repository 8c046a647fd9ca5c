from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any

"""Date normalization helpers.

Canonical date form is ``DD-MM-YYYY``. Three case-insensitive literals are
"not a calendar date" business states and are preserved verbatim:

    NA         not applicable
    Milestone  billed at project milestone
    SOW        bound by scope-of-work

Unparseable values pass through unchanged; the validator decides whether they
are acceptable.
"""

__all__ = [
    "SENTINELS",
    "is_sentinel",
    "normalize_date",
    "date_for_comparison",
    "is_valid_date",
    "from_serial",
]

SENTINELS: frozenset[str] = frozenset({"na", "milestone", "sow"})

# spreadsheet serial day 0 (1900 leap-year bug 補正込み)
SERIAL_EPOCH = date(1899, 12, 30)
MAX_SERIAL = 2958465  # 31-12-9999

_DMY_DASH = re.compile(r"^(\d{2})-(\d{2})-(\d{4})$")
_YMD_DASH = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_DMY_SLASH = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
_YMD_SLASH = re.compile(r"^(\d{4})/(\d{2})/(\d{2})$")
_DMY_DOT = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})$")


def is_sentinel(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() in SENTINELS


def _fmt(d: date) -> str:
    return f"{d.day:02d}-{d.month:02d}-{d.year:04d}"


def from_serial(serial: float) -> str:
    """Convert a spreadsheet date serial to DD-MM-YYYY.

    Serials before 61 predate the fictitious 29-02-1900, so they are shifted by
    one day to line up with the 1899-12-30 epoch.
    """
    days = int(serial)
    if days < 61:
        days += 1
    return _fmt(SERIAL_EPOCH + timedelta(days=days))


def _parse_iso_timestamp(text: str) -> str | None:
    if "T" not in text and not text.endswith("Z"):
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return _fmt(parsed.date())


def normalize_date(value: Any) -> str:
    """Normalize a date cell to DD-MM-YYYY, preserving sentinels verbatim.

    Accepts DD-MM-YYYY, YYYY-MM-DD, DD/MM/YYYY, YYYY/MM/DD, DD.MM.YYYY,
    ISO-8601 timestamps, datetime/date objects and native date serials.
    """
    if value is None:
        return ""
    if isinstance(value, datetime):
        return _fmt(value.date())
    if isinstance(value, date):
        return _fmt(value)
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        if value != value:  # NaN
            return ""
        if 0 < value <= MAX_SERIAL:
            return from_serial(value)
        return str(value)

    text = str(value).strip()
    if not text:
        return ""
    if text.lower() in SENTINELS:
        return text

    if _DMY_DASH.match(text):
        return text
    m = _YMD_DASH.match(text) or _YMD_SLASH.match(text)
    if m:
        y, mo, d = m.groups()
        return f"{d}-{mo}-{y}"
    m = _DMY_SLASH.match(text) or _DMY_DOT.match(text)
    if m:
        d, mo, y = m.groups()
        return f"{d}-{mo}-{y}"
    iso = _parse_iso_timestamp(text)
    if iso is not None:
        return iso
    return text


def date_for_comparison(value: Any) -> str:
    """Normalized comparison key: DD-MM-YYYY, lower-cased sentinel, or ''."""
    normalized = normalize_date(value)
    if normalized.lower() in SENTINELS:
        return normalized.lower()
    return normalized


def is_valid_date(value: str, *, min_year: int = 1900, max_year: int = 2100) -> bool:
    """True for '', a sentinel, or a real calendar date in canonical form."""
    text = (value or "").strip()
    if not text or text.lower() in SENTINELS:
        return True
    m = _DMY_DASH.match(text)
    if not m:
        return False
    d, mo, y = (int(p) for p in m.groups())
    if not (min_year <= y <= max_year):
        return False
    try:
        date(y, mo, d)
    except ValueError:
        return False
    return True
