"""Heart-rate parser for Luna ring CSV exports.

Luna logs at a higher rate than 1 Hz, so every raw row is grouped into its
whole-second bucket and the bucket emits the mean heart rate.
"""

from __future__ import annotations

import dataclasses
from collections import defaultdict
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np

from lunabench.models import DeviceType, MetricType, NormalizedReading, ReadingMeta
from lunabench.parsers.base import (
    ParseResult,
    ParseStats,
    date_from_filename,
    from_epoch_second,
    iter_luna_window,
    log_stats,
    parse_number,
)

HR_COLUMN = "Hrs"

# The ring writes 255 when the PPG pipeline has no beat lock
HR_NO_READING = 255.0


class LunaHeartRateParser:
    """Parse ``Hrs`` from a Luna export into one reading per second."""

    device_type = DeviceType.LUNA
    metric = MetricType.HR

    @staticmethod
    def parse(
        path: Path | str,
        meta: ReadingMeta,
        start_time: datetime,
        end_time: datetime,
        clock_offset: timedelta = timedelta(0),
    ) -> ParseResult:
        """Parse a Luna HR file.

        Bare ``HH:MM:SS`` timestamps are completed with the date in the file
        name (``luna_2026-3-5.csv``), or today's UTC date if there is none.
        The ring's clock is already UTC, so *clock_offset* is not applied.
        """
        path = Path(path)
        meta = dataclasses.replace(meta, device_type=DeviceType.LUNA.value)
        stats = ParseStats()
        buckets: dict[int, list[float | None]] = defaultdict(list)

        rows = iter_luna_window(path, "Luna HR", date_from_filename(path), start_time, end_time, stats)
        for sec, row in rows:
            hr = parse_number(row.get(HR_COLUMN))
            if hr is None:
                stats.invalid_value_rows += 1
                stats.skipped_rows += 1
                continue
            stats.accepted_rows += 1
            buckets[sec].append(None if hr == HR_NO_READING else hr)

        readings = []
        for sec in sorted(buckets):
            values = [v for v in buckets[sec] if v is not None]
            value = round(float(np.mean(values)), 2) if values else None
            readings.append(NormalizedReading(meta, from_epoch_second(sec), MetricType.HR, value))

        stats.buckets = len(readings)
        log_stats("Luna HR", path, stats, readings)
        return ParseResult(readings, stats)
