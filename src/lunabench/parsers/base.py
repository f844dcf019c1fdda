"""Shared building blocks for the vendor parsers.

Every parser turns one raw export into :class:`NormalizedReading` objects at
one-second resolution, restricted to an inclusive ``[start, end]`` window.
Row-level problems are counted in a :class:`ParseStats` and skipped; only a
structural problem (no timestamp column, no data section) raises
:class:`~lunabench.errors.ParseError`.
"""

from __future__ import annotations

import csv
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterator, Sequence

from lunabench.errors import ParseError
from lunabench.models import NormalizedReading, as_utc

logger = logging.getLogger(__name__)

# Column order of Luna raw exports that ship without a header line.
LUNA_COLUMNS = [
    "SySTime", "ACC_X", "ACC_Y", "ACC_Z",
    "G_RawData", "R_RawData", "IR_RawData", "AMB_Rawdata",
    "G_Scale_PPG", "R_Scale_PPG", "IR_Scale_PPG",
    "g_agin", "r_agin", "ir_agin",
    "Hr_Qi", "Hrs", "Spo2_Qi", "Spo2",
]

# Some exports mark section breaks with a row of "=" characters.
SEPARATOR_MARK = "===="

MISSING = "--"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class ParseStats:
    """Row accounting for one parse, for diagnostics."""

    total_rows: int = 0
    accepted_rows: int = 0
    skipped_rows: int = 0
    invalid_timestamp_rows: int = 0
    invalid_value_rows: int = 0
    out_of_window_rows: int = 0
    invalid_rows: int = 0  # emitted but flagged is_valid=False
    buckets: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "totalRows": self.total_rows,
            "acceptedRows": self.accepted_rows,
            "skippedRows": self.skipped_rows,
            "invalidTimestampRows": self.invalid_timestamp_rows,
            "invalidValueRows": self.invalid_value_rows,
            "outOfWindowRows": self.out_of_window_rows,
            "invalidRows": self.invalid_rows,
            "buckets": self.buckets,
        }


@dataclass
class ParseResult:
    """Readings produced from one file plus the row accounting."""

    readings: list[NormalizedReading] = field(default_factory=list)
    stats: ParseStats = field(default_factory=ParseStats)

    def __len__(self) -> int:
        return len(self.readings)

    def __iter__(self) -> Iterator[NormalizedReading]:
        return iter(self.readings)


def log_stats(label: str, path: Path, stats: ParseStats, readings: Sequence[NormalizedReading]) -> None:
    logger.info(
        "%s parse of %s: %d rows, %d accepted, %d skipped "
        "(%d bad timestamp, %d bad value, %d out of window), %d flagged invalid, %d readings",
        label, path.name, stats.total_rows, stats.accepted_rows, stats.skipped_rows,
        stats.invalid_timestamp_rows, stats.invalid_value_rows, stats.out_of_window_rows,
        stats.invalid_rows, len(readings),
    )
    if readings:
        logger.debug("first=%r last=%r", readings[0], readings[-1])


# ---------------------------------------------------------------------------
# Value / time parsing
# ---------------------------------------------------------------------------

_TIME_ONLY = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2})(?:\.(\d+))?)?$")
_DATE_TIME = re.compile(
    r"^(\d{4})-(\d{1,2})-(\d{1,2})[ T](\d{1,2}):(\d{2})(?::(\d{2})(?:\.(\d+))?)?$"
)
_FILENAME_DATE = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")


def parse_number(text: str | None) -> float | None:
    """Parse a finite float; None for empty, ``--`` or garbage cells."""
    if text is None:
        return None
    text = text.strip()
    if not text or text == MISSING:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _build(day: date, hh: str, mm: str, ss: str | None, frac: str | None) -> datetime:
    micro = int((frac or "0")[:6].ljust(6, "0"))
    return datetime(
        day.year, day.month, day.day, int(hh), int(mm), int(ss or 0), micro,
        tzinfo=timezone.utc,
    )


def parse_wall_clock(text: str, default_date: date) -> datetime | None:
    """Parse ``YYYY-MM-DD HH:MM:SS[.fff]`` or a bare ``HH:MM:SS[.fff]``.

    The wall clock is taken to be in the same zone as the session bounds,
    which are UTC; a bare time of day is completed with *default_date*.
    Returns None if the text is not a valid timestamp.
    """
    text = text.strip()
    try:
        m = _TIME_ONLY.match(text)
        if m:
            return _build(default_date, *m.groups())
        m = _DATE_TIME.match(text)
        if m:
            y, mo, d, hh, mm, ss, frac = m.groups()
            return _build(date(int(y), int(mo), int(d)), hh, mm, ss, frac)
    except ValueError:
        return None
    return None


def date_from_filename(path: Path) -> date:
    """Date encoded as ``YYYY-M-D`` in a file name, else today's UTC date."""
    m = _FILENAME_DATE.search(path.name)
    if m:
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            pass
    return datetime.now(timezone.utc).date()


def parse_elapsed(text: str) -> int | None:
    """``HH:MM:SS`` elapsed time -> seconds."""
    parts = [p.strip() for p in text.split(":")]
    if len(parts) != 3:
        return None
    try:
        hours, minutes, seconds = (int(p) for p in parts)
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds


def truncate_to_second(ts: datetime) -> datetime:
    return ts.replace(microsecond=0)


def epoch_second(ts: datetime) -> int:
    return math.floor(ts.timestamp())


def from_epoch_second(sec: int) -> datetime:
    return datetime.fromtimestamp(sec, tz=timezone.utc)


def in_window(ts: datetime, start: datetime, end: datetime) -> bool:
    """Inclusive window check; naive datetimes are taken as UTC."""
    return as_utc(start) <= as_utc(ts) <= as_utc(end)


# ---------------------------------------------------------------------------
# CSV access
# ---------------------------------------------------------------------------


def read_lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8-sig", errors="replace").splitlines()


def find_time_column(headers: Sequence[str]) -> str | None:
    """First header whose name contains "time", case-insensitive."""
    for col in headers:
        if "time" in col.lower():
            return col
    return None


def _looks_headerless(path: Path, first_line: str, today: date) -> bool:
    if "SySTime" in first_line:
        return False
    if path.suffix.lower() == ".txt":
        return True
    first_cell = first_line.split(",", 1)[0]
    return parse_wall_clock(first_cell, today) is not None


def read_luna_table(path: Path, label: str) -> tuple[str, list[dict[str, str]]]:
    """Load a Luna export, returning the timestamp column and its rows.

    Raw ``.txt`` dumps and header-less CSVs get the fixed Luna column list.

    Raises:
        ParseError: if no column name contains "time".
    """
    lines = read_lines(path)
    if not lines:
        raise ParseError(f"{label}: file is empty", device_type="luna")

    fieldnames: list[str] | None = None
    if _looks_headerless(path, lines[0], date.today()):
        fieldnames = LUNA_COLUMNS
        logger.info("%s has no header line; using the Luna column layout", path.name)

    reader = csv.DictReader(lines, fieldnames=fieldnames, skipinitialspace=True)
    headers = [h.strip() for h in (reader.fieldnames or [])]
    reader.fieldnames = headers
    time_col = find_time_column(headers)
    if time_col is None:
        raise ParseError(f"{label}: no timestamp column found in {path.name}", device_type="luna")
    logger.debug("%s: timestamp column %r", path.name, time_col)
    return time_col, list(reader)


def iter_luna_window(
    path: Path,
    label: str,
    default_date: date,
    start_time: datetime,
    end_time: datetime,
    stats: ParseStats,
) -> Iterator[tuple[int, dict[str, str]]]:
    """Yield ``(epoch_second, row)`` for Luna rows inside the window.

    Separator rows, unparseable timestamps and out-of-window rows are
    counted in *stats* and skipped.
    """
    time_col, rows = read_luna_table(path, label)
    for row in rows:
        stats.total_rows += 1
        raw = (row.get(time_col) or "").strip()
        if not raw or SEPARATOR_MARK in raw:
            stats.skipped_rows += 1
            continue

        ts = parse_wall_clock(raw, default_date)
        if ts is None:
            stats.invalid_timestamp_rows += 1
            stats.skipped_rows += 1
            continue

        ts = truncate_to_second(ts)
        if not in_window(ts, start_time, end_time):
            stats.out_of_window_rows += 1
            stats.skipped_rows += 1
            continue

        yield epoch_second(ts), row
