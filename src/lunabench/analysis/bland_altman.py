"""Bland-Altman agreement analysis of paired measurements."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from lunabench.models import BlandAltmanResult

# Two-sided 95% normal quantile
LOA_Z = 1.96


def bland_altman(a: Sequence[float], b: Sequence[float]) -> BlandAltmanResult | None:
    """Differences ``a - b``, averages and 95% limits of agreement.

    Returns None when the inputs are empty or differ in length.
    """
    if len(a) == 0 or len(a) != len(b):
        return None

    x = np.asarray(a, dtype=float)
    y = np.asarray(b, dtype=float)
    diffs = x - y
    avgs = (x + y) / 2.0

    mean_diff = float(diffs.mean())
    std_diff = float(diffs.std())
    upper = mean_diff + LOA_Z * std_diff
    lower = mean_diff - LOA_Z * std_diff
    inside = np.count_nonzero((diffs >= lower) & (diffs <= upper))

    return BlandAltmanResult(
        differences=diffs.tolist(),
        averages=avgs.tolist(),
        mean_difference=mean_diff,
        std_difference=std_diff,
        upper_limit=upper,
        lower_limit=lower,
        percentage_in_limits=float(100.0 * inside / len(diffs)),
    )
