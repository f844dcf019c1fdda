"""Time-tolerant pairing of two devices and their agreement statistics.

Pairing is a two-pointer merge-join over both timestamp-sorted streams:

* ``|t1 - t2| <= tolerance``: the two readings are consumed together and
  kept as a pair only if both carry a value;
* otherwise the cursor with the earlier timestamp advances.

The pass is greedy and linear. A reading matched against a null-valued
neighbour is consumed even if a later neighbour would have paired, and
near-misses just outside the tolerance never pair.
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Sequence

import numpy as np
from scipy import stats

from lunabench.analysis.bland_altman import bland_altman
from lunabench.analysis.stats import valid_values
from lunabench.models import MetricType, NormalizedReading, PairwiseComparison

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_MS = 1000


class MatchedPair(NamedTuple):
    t1_ms: int
    t2_ms: int
    a: float  # device under test
    b: float  # reference


def match_readings(
    readings1: Sequence[NormalizedReading],
    readings2: Sequence[NormalizedReading],
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
) -> list[MatchedPair]:
    """Pair readings whose timestamps lie within *tolerance_ms* of each other.

    Inputs are re-sorted by timestamp; store order is not trusted.
    """
    r1 = sorted(readings1, key=lambda r: r.epoch_ms)
    r2 = sorted(readings2, key=lambda r: r.epoch_ms)

    pairs: list[MatchedPair] = []
    i = j = 0
    while i < len(r1) and j < len(r2):
        t1 = r1[i].epoch_ms
        t2 = r2[j].epoch_ms
        if abs(t1 - t2) <= tolerance_ms:
            v1, v2 = r1[i].value, r2[j].value
            if v1 is not None and v2 is not None:
                pairs.append(MatchedPair(t1, t2, v1, v2))
            i += 1
            j += 1
        elif t1 < t2:
            i += 1
        else:
            j += 1
    return pairs


def mape(a: np.ndarray, b: np.ndarray) -> float | None:
    """Mean absolute percentage error of *a* against reference *b*.

    Pairs whose reference is exactly 0 are left out of the mean; None if
    every reference is 0.
    """
    mask = b != 0
    if not mask.any():
        return None
    return float(np.mean(np.abs(b[mask] - a[mask]) / np.abs(b[mask])) * 100.0)


def pearson(a: np.ndarray, b: np.ndarray) -> float | None:
    """Pearson r, or None when it is undefined (n < 2 or a constant series)."""
    if len(a) < 2 or np.ptp(a) == 0 or np.ptp(b) == 0:
        return None
    r, _ = stats.pearsonr(a, b)
    r = float(r)
    return r if np.isfinite(r) else None


def compare_devices(
    d1: str,
    readings1: Sequence[NormalizedReading],
    d2: str,
    readings2: Sequence[NormalizedReading],
    metric: MetricType,
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
) -> PairwiseComparison:
    """Agreement statistics of *d1* (under test) against *d2* (reference).

    Differences are ``d1 - d2``, so a negative bias means *d1* reads low.
    With no matched pairs only the device tags, metric and a zero match
    count are set.
    """
    pairs = match_readings(readings1, readings2, tolerance_ms)
    n = len(pairs)
    if n == 0:
        logger.info("%s vs %s (%s): no matched timestamps", d1, d2, metric.value)
        return PairwiseComparison(d1=d1, d2=d2, metric=metric, matched_timestamps=0)

    a = np.array([p.a for p in pairs], dtype=float)
    b = np.array([p.b for p in pairs], dtype=float)
    diffs = a - b

    r = pearson(a, b)
    ba = bland_altman(a, b)
    valid1 = len(valid_values(readings1))
    valid2 = len(valid_values(readings2))

    comparison = PairwiseComparison(
        d1=d1,
        d2=d2,
        metric=metric,
        matched_timestamps=n,
        tolerance_ms=tolerance_ms,
        mae=float(np.mean(np.abs(diffs))),
        rmse=float(np.sqrt(np.mean(diffs ** 2))),
        mape=mape(a, b),
        pearson_r=r,
        r_squared=r * r if r is not None else None,
        mean_bias=ba.mean_difference,
        sd_diff=ba.std_difference,
        upper_loa=ba.upper_limit,
        lower_loa=ba.lower_limit,
        coverage_vs_d1=n / valid1,
        coverage_vs_d2=n / valid2,
        bland_altman=ba,
    )
    logger.info("%r", comparison)
    return comparison
