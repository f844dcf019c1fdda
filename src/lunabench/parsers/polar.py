"""Heart-rate parser for Polar chest-strap CSV exports.

A Polar export opens with a two-line metadata block::

    Name,Sport,Date,Start time,Duration,...
    Tester,RUNNING,13-02-2026,15:10:09,00:30:00,...

followed, a few lines further down, by the sample table whose header row
contains ``Sample rate,Time,HR (bpm)``. ``Time`` is the elapsed time since
the recording started.
"""

from __future__ import annotations

import csv
import dataclasses
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from lunabench.errors import ParseError
from lunabench.models import DeviceType, MetricType, NormalizedReading, ReadingMeta
from lunabench.parsers.base import (
    ParseResult,
    ParseStats,
    in_window,
    log_stats,
    parse_elapsed,
    parse_number,
    read_lines,
)

logger = logging.getLogger(__name__)

DATA_MARKER = "Sample rate,Time,HR (bpm)"
TIME_COLUMN = "Time"
HR_COLUMN = "HR (bpm)"


def recording_start(lines: list[str]) -> datetime | None:
    """Recording start from the metadata block (``Date`` DD-MM-YYYY, ``Start time`` HH:MM:SS)."""
    if len(lines) < 2:
        return None
    try:
        reader = csv.reader(lines[:2])
        keys = next(reader, [])
        values = next(reader, [])
        fields = {k.strip(): v.strip() for k, v in zip(keys, values)}
        day, month, year = (int(p) for p in fields["Date"].split("-"))
        hh, mm, ss = (int(p) for p in fields["Start time"].split(":"))
        return datetime(year, month, day, hh, mm, ss, tzinfo=timezone.utc)
    except (KeyError, ValueError, csv.Error):
        return None


class PolarHeartRateParser:
    """Parse ``HR (bpm)`` from a Polar export, one reading per row."""

    device_type = DeviceType.POLAR
    metric = MetricType.HR

    @staticmethod
    def parse(
        path: Path | str,
        meta: ReadingMeta,
        start_time: datetime,
        end_time: datetime,
        clock_offset: timedelta = timedelta(0),
    ) -> ParseResult:
        """Parse a Polar file.

        *clock_offset* is added to the recording start from the metadata
        block. If that start cannot be read, the current time is used.

        Raises:
            ParseError: if the sample table or its ``Time``/``HR (bpm)``
                columns are missing.
        """
        path = Path(path)
        meta = dataclasses.replace(meta, device_type=DeviceType.POLAR.value)
        stats = ParseStats()
        lines = read_lines(path)

        marker = next((i for i, line in enumerate(lines) if DATA_MARKER in line), None)
        if marker is None:
            raise ParseError(
                f"Polar HR: no data section in {path.name}", device_type=DeviceType.POLAR.value
            )

        base = recording_start(lines)
        if base is None:
            logger.warning("%s: unreadable Date/Start time metadata, using the current time", path.name)
            base = datetime.now(timezone.utc).replace(microsecond=0)
        else:
            base += clock_offset
        logger.debug("%s: recording start %s", path.name, base.isoformat())

        table = csv.reader(lines[marker:])
        header = [h.strip() for h in next(table)]
        if TIME_COLUMN not in header or HR_COLUMN not in header:
            raise ParseError(
                f"Polar HR: missing {TIME_COLUMN!r} or {HR_COLUMN!r} column in {path.name}",
                device_type=DeviceType.POLAR.value,
            )
        time_idx = header.index(TIME_COLUMN)
        hr_idx = header.index(HR_COLUMN)

        readings: list[NormalizedReading] = []
        for cols in table:
            if not any(c.strip() for c in cols):
                continue
            stats.total_rows += 1

            elapsed = parse_elapsed(cols[time_idx]) if time_idx < len(cols) else None
            if elapsed is None:
                stats.invalid_timestamp_rows += 1
                stats.skipped_rows += 1
                continue

            hr = parse_number(cols[hr_idx]) if hr_idx < len(cols) else None
            if hr is None:
                stats.invalid_value_rows += 1
                stats.skipped_rows += 1
                continue

            ts = base + timedelta(seconds=elapsed)
            if not in_window(ts, start_time, end_time):
                stats.out_of_window_rows += 1
                stats.skipped_rows += 1
                continue

            stats.accepted_rows += 1
            readings.append(NormalizedReading(meta, ts, MetricType.HR, round(hr, 2)))

        readings.sort(key=lambda r: r.timestamp)
        log_stats("Polar HR", path, stats, readings)
        return ParseResult(readings, stats)
