"""SpO2 parser for Masimo pulse-oximeter CSV exports.

Expected columns: Session, Index, Timestamp, Date, Time, O2 Saturation,
Pulse Rate, Perfusion Index. ``Timestamp`` is Unix epoch seconds and the
device samples at 1 Hz, so there is no bucketing: one row, one reading.

Unlike the Luna parsers, a row with a poor perfusion index is not nulled;
it keeps its value and its second, flagged ``is_valid=False``.
"""

from __future__ import annotations

import csv
import dataclasses
import logging
from datetime import datetime, timedelta
from pathlib import Path

from lunabench.errors import ParseError
from lunabench.models import DeviceType, MetricType, NormalizedReading, ReadingMeta
from lunabench.parsers.base import (
    MISSING,
    ParseResult,
    ParseStats,
    from_epoch_second,
    in_window,
    log_stats,
    parse_number,
    read_lines,
)

logger = logging.getLogger(__name__)

TIMESTAMP_COLUMN = "Timestamp"
SPO2_COLUMN = "O2 Saturation"
PERFUSION_COLUMN = "Perfusion Index"


def perfusion_ok(raw: str | None) -> bool:
    """A perfusion index of ``--`` or a positive number marks a usable sample."""
    if raw is None:
        return False
    raw = raw.strip()
    if raw == MISSING:
        return True
    value = parse_number(raw)
    return value is not None and value > 0


class MasimoSpO2Parser:
    """Parse ``O2 Saturation`` from a Masimo export, one reading per row."""

    device_type = DeviceType.MASIMO
    metric = MetricType.SPO2

    @staticmethod
    def parse(
        path: Path | str,
        meta: ReadingMeta,
        start_time: datetime,
        end_time: datetime,
        clock_offset: timedelta = timedelta(0),
    ) -> ParseResult:
        """Parse a Masimo file.

        *clock_offset* is added to every epoch, for oximeters whose clock
        was set to local time rather than UTC.

        Raises:
            ParseError: if the file has no ``Timestamp`` column.
        """
        path = Path(path)
        meta = dataclasses.replace(meta, device_type=DeviceType.MASIMO.value)
        stats = ParseStats()

        reader = csv.DictReader(read_lines(path))
        headers = [h.strip() for h in (reader.fieldnames or [])]
        reader.fieldnames = headers
        if TIMESTAMP_COLUMN not in headers:
            raise ParseError(
                f"Masimo SpO2: no {TIMESTAMP_COLUMN!r} column in {path.name}",
                device_type=DeviceType.MASIMO.value,
            )
        logger.debug("%s headers: %s", path.name, headers)

        readings: list[NormalizedReading] = []
        for row in reader:
            stats.total_rows += 1

            epoch = parse_number(row.get(TIMESTAMP_COLUMN))
            if epoch is None:
                stats.invalid_timestamp_rows += 1
                stats.skipped_rows += 1
                continue
            try:
                ts = from_epoch_second(int(epoch)) + clock_offset
            except (OverflowError, OSError, ValueError):
                stats.invalid_timestamp_rows += 1
                stats.skipped_rows += 1
                continue

            if not in_window(ts, start_time, end_time):
                stats.out_of_window_rows += 1
                stats.skipped_rows += 1
                continue

            spo2 = parse_number(row.get(SPO2_COLUMN))
            if spo2 is None or not 0 <= spo2 <= 100:
                stats.invalid_value_rows += 1
                stats.skipped_rows += 1
                continue

            is_valid = perfusion_ok(row.get(PERFUSION_COLUMN))
            if not is_valid:
                stats.invalid_rows += 1
            stats.accepted_rows += 1
            readings.append(NormalizedReading(meta, ts, MetricType.SPO2, spo2, is_valid=is_valid))

        readings.sort(key=lambda r: r.timestamp)
        log_stats("Masimo SpO2", path, stats, readings)
        return ParseResult(readings, stats)
