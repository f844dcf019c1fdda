"""Per-device descriptive statistics and availability.

Standard deviations throughout lunabench are population (ddof=0), so a
device's ``stdDev`` and a comparison's ``sdDiff`` use the same convention.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from lunabench.models import DeviceStats, MetricStats, MetricType, NormalizedReading


def valid_values(readings: Sequence[NormalizedReading]) -> list[float]:
    """Non-null values of *readings*, in order."""
    return [r.value for r in readings if r.value is not None]


def descriptive_stats(values: Sequence[float]) -> MetricStats | None:
    """min/max/mean/median/std/range of *values*; None if empty."""
    if len(values) == 0:
        return None
    arr = np.asarray(values, dtype=float)
    lo = float(arr.min())
    hi = float(arr.max())
    return MetricStats(
        min=lo,
        max=hi,
        avg=float(arr.mean()),
        median=float(np.median(arr)),
        std_dev=float(arr.std()),
        range=hi - lo,
    )


def calc_device_stats(
    device_type: str,
    readings: Sequence[NormalizedReading],
    metric: MetricType,
) -> DeviceStats:
    """Sample counts, drop rate and value statistics for one device.

    ``drop_rate`` and ``availability`` are 0 when there are no samples, and
    ``stats`` is None when no sample carries a value.
    """
    total = len(readings)
    values = valid_values(readings)
    valid = len(values)
    nulls = total - valid
    return DeviceStats(
        device_type=device_type,
        metric=metric,
        firmware_version=readings[0].meta.firmware_version if readings else None,
        total_samples=total,
        valid_samples=valid,
        null_samples=nulls,
        drop_rate=nulls / total if total else 0.0,
        availability=valid / total if total else 0.0,
        stats=descriptive_stats(values),
    )
