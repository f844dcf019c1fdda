"""Shared pieces of the summary rollups.

Every rollup is a full recomputation: read all matching sessions and
analyses, average, and replace the stored summary (or delete it when
nothing matches). Running one twice gives the same document apart from
its timestamp.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

import numpy as np

from lunabench.models import PairwiseComparison, SessionAnalysis, SessionRecord

# Store kinds
USER_ACCURACY = "userAccuracy"
FIRMWARE_PERFORMANCE = "firmwarePerformance"
ACTIVITY_PERFORMANCE = "activityPerformance"
BENCHMARK_COMPARISON = "benchmarkComparison"
DAILY_TREND = "dailyTrend"
GLOBAL_SUMMARY = "globalSummary"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def mean_or_none(values: Iterable[float | None]) -> float | None:
    """Arithmetic mean of the non-null values; None if there are none."""
    present = [v for v in values if v is not None]
    if not present:
        return None
    return float(np.mean(present))


def benchmark_comparison(session: SessionRecord, analysis: SessionAnalysis) -> PairwiseComparison | None:
    """The luna-vs-benchmark comparison of *analysis* for the session's metric."""
    return analysis.comparison_for(session.benchmark_device)


def analyses_by_session(analyses: Iterable[SessionAnalysis]) -> dict[str, SessionAnalysis]:
    return {a.session_id: a for a in analyses}


def scored_sessions(
    sessions: Sequence[SessionRecord],
    analyses: dict[str, SessionAnalysis],
    valid_only: bool = False,
) -> list[tuple[SessionRecord, SessionAnalysis, PairwiseComparison]]:
    """Sessions whose luna-vs-benchmark comparison exists.

    With *valid_only*, invalid analyses and analyses without any comparison
    are dropped as well.
    """
    out = []
    for session in sessions:
        analysis = analyses.get(session.session_id)
        if analysis is None:
            continue
        if valid_only and (not analysis.is_valid or not analysis.pairwise_comparisons):
            continue
        comparison = benchmark_comparison(session, analysis)
        if comparison is not None:
            out.append((session, analysis, comparison))
    return out


# ---------------------------------------------------------------------------
# Averages
# ---------------------------------------------------------------------------


@dataclass
class ComparisonAverages:
    """Means of comparison statistics, each over the comparisons that have it."""

    avg_mae: float | None = None
    avg_rmse: float | None = None
    avg_mape: float | None = None
    avg_pearson: float | None = None
    avg_bias: float | None = None
    avg_coverage_percent: float | None = None

    @classmethod
    def of(cls, comparisons: Sequence[PairwiseComparison]) -> ComparisonAverages:
        coverage = [
            c.coverage_vs_d2 * 100.0 if c.coverage_vs_d2 is not None else None
            for c in comparisons
        ]
        return cls(
            avg_mae=mean_or_none(c.mae for c in comparisons),
            avg_rmse=mean_or_none(c.rmse for c in comparisons),
            avg_mape=mean_or_none(c.mape for c in comparisons),
            avg_pearson=mean_or_none(c.pearson_r for c in comparisons),
            avg_bias=mean_or_none(c.mean_bias for c in comparisons),
            avg_coverage_percent=mean_or_none(coverage),
        )

    def to_dict(self, *fields: str) -> dict[str, Any]:
        """Serialize, limited to *fields* (camelCase) if any are given."""
        d = {
            "avgMAE": self.avg_mae,
            "avgRMSE": self.avg_rmse,
            "avgMAPE": self.avg_mape,
            "avgPearson": self.avg_pearson,
            "avgBias": self.avg_bias,
            "avgCoveragePercent": self.avg_coverage_percent,
        }
        if fields:
            d = {k: d[k] for k in fields}
        return d


# ---------------------------------------------------------------------------
# Breakdowns
# ---------------------------------------------------------------------------


@dataclass
class AccuracyGroup:
    """Mean session accuracy (``100 - MAPE``) for one value of a breakdown key."""

    key: str
    avg_accuracy: float
    total_sessions: int
    total_duration_sec: float | None = None

    def to_dict(self, key_name: str) -> dict[str, Any]:
        d: dict[str, Any] = {
            key_name: self.key,
            "avgAccuracy": self.avg_accuracy,
            "totalSessions": self.total_sessions,
        }
        if self.total_duration_sec is not None:
            d["totalDurationSec"] = self.total_duration_sec
        return d


def group_accuracy(
    entries: Iterable[tuple[str | None, float, float]],
    with_duration: bool = True,
) -> list[AccuracyGroup]:
    """Group ``(key, accuracy, duration_sec)`` entries by key, sorted by key.

    Entries with an empty key are ignored.
    """
    accuracy: dict[str, list[float]] = defaultdict(list)
    duration: dict[str, float] = defaultdict(float)
    for key, acc, dur in entries:
        if not key:
            continue
        accuracy[key].append(acc)
        duration[key] += dur
    return [
        AccuracyGroup(
            key=key,
            avg_accuracy=float(np.mean(accuracy[key])),
            total_sessions=len(accuracy[key]),
            total_duration_sec=duration[key] if with_duration else None,
        )
        for key in sorted(accuracy)
    ]
