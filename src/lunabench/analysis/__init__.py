"""Agreement analysis between the device under test and reference devices.

Modules:
    stats        -- per-device availability and descriptive statistics
    bland_altman -- differences, averages and 95% limits of agreement
    pairwise     -- two-pointer timestamp matching and comparison metrics
    session      -- whole-session analysis against the store
"""

from lunabench.analysis.stats import calc_device_stats, descriptive_stats
from lunabench.analysis.bland_altman import bland_altman
from lunabench.analysis.pairwise import (
    DEFAULT_TOLERANCE_MS,
    MatchedPair,
    compare_devices,
    match_readings,
)
from lunabench.analysis.session import analyze_session, build_analysis

__all__ = [
    # stats
    "calc_device_stats",
    "descriptive_stats",
    # bland_altman
    "bland_altman",
    # pairwise
    "DEFAULT_TOLERANCE_MS",
    "MatchedPair",
    "compare_devices",
    "match_readings",
    # session
    "analyze_session",
    "build_analysis",
]
