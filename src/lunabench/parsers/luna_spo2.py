"""SpO2 parser for Luna ring CSV exports.

Each raw row carries a quality index (``Spo2_Qi``). Per second, the emitted
value is the quality-weighted mean of the usable rows.
"""

from __future__ import annotations

import dataclasses
from collections import defaultdict
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np

from lunabench.models import DeviceType, MetricType, NormalizedReading, ReadingMeta, as_utc
from lunabench.parsers.base import (
    ParseResult,
    ParseStats,
    from_epoch_second,
    iter_luna_window,
    log_stats,
    parse_number,
)

SPO2_COLUMN = "Spo2"
QUALITY_COLUMN = "Spo2_Qi"


def weighted_spo2(samples: list[tuple[float | None, float]]) -> float | None:
    """Quality-weighted SpO2 of one second's ``(value, quality)`` samples.

    Only samples with a value and positive quality count, so the weights
    never sum to zero. No usable samples gives None.
    """
    usable = [(v, q) for v, q in samples if v is not None and q > 0]
    if not usable:
        return None
    values = np.array([v for v, _ in usable], dtype=float)
    weights = np.array([q for _, q in usable], dtype=float)
    return round(float((values * weights).sum() / weights.sum()), 2)


class LunaSpO2Parser:
    """Parse ``Spo2``/``Spo2_Qi`` from a Luna export into one reading per second."""

    device_type = DeviceType.LUNA
    metric = MetricType.SPO2

    @staticmethod
    def parse(
        path: Path | str,
        meta: ReadingMeta,
        start_time: datetime,
        end_time: datetime,
        clock_offset: timedelta = timedelta(0),
    ) -> ParseResult:
        """Parse a Luna SpO2 file.

        Bare ``HH:MM:SS`` timestamps take the session start's UTC date. Rows
        with zero quality or an out-of-range value keep their second but
        contribute nothing to it, so such a second may emit a None value.
        """
        path = Path(path)
        meta = dataclasses.replace(meta, device_type=DeviceType.LUNA.value)
        stats = ParseStats()
        buckets: dict[int, list[tuple[float | None, float]]] = defaultdict(list)
        default_date = as_utc(start_time).date()

        rows = iter_luna_window(path, "Luna SpO2", default_date, start_time, end_time, stats)
        for sec, row in rows:
            spo2 = parse_number(row.get(SPO2_COLUMN))
            if spo2 is None:
                stats.invalid_value_rows += 1
                stats.skipped_rows += 1
                continue

            quality = parse_number(row.get(QUALITY_COLUMN)) or 0.0
            if quality == 0 or not 0 <= spo2 <= 100:
                stats.invalid_rows += 1
                spo2 = None
            stats.accepted_rows += 1
            buckets[sec].append((spo2, quality))

        readings = [
            NormalizedReading(meta, from_epoch_second(sec), MetricType.SPO2, weighted_spo2(buckets[sec]))
            for sec in sorted(buckets)
        ]

        stats.buckets = len(readings)
        log_stats("Luna SpO2", path, stats, readings)
        return ParseResult(readings, stats)
