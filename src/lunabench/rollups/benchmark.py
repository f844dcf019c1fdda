"""Luna vs one reference device across all sessions, keyed by ``(device, metric)``."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from lunabench.models import MetricType
from lunabench.rollups.common import BENCHMARK_COMPARISON, ComparisonAverages, utcnow
from lunabench.store import Store

logger = logging.getLogger(__name__)


@dataclass
class BenchmarkComparisonSummary:
    benchmark_device_type: str
    metric: MetricType
    total_sessions: int
    averages: ComparisonAverages = field(default_factory=ComparisonAverages)
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "benchmarkDeviceType": self.benchmark_device_type,
            "metric": self.metric.value,
            "totalSessions": self.total_sessions,
            "stats": self.averages.to_dict("avgMAE", "avgRMSE", "avgMAPE", "avgPearson", "avgBias"),
            "lastUpdated": self.last_updated.isoformat(),
        }


async def update_benchmark_comparison(
    store: Store,
    benchmark_device_type: str,
    metric: MetricType = MetricType.HR,
) -> BenchmarkComparisonSummary | None:
    """Recompute the luna vs *benchmark_device_type* summary for *metric*.

    Every valid analysis holding that comparison counts, whether or not the
    device was the session's designated benchmark.
    """
    key = (benchmark_device_type, metric.value)
    comparisons = []
    for analysis in await store.list_analyses(metric=metric):
        if not analysis.is_valid:
            continue
        comparison = analysis.comparison_for(benchmark_device_type)
        if comparison is not None:
            comparisons.append(comparison)

    if not comparisons:
        await store.delete_summary(BENCHMARK_COMPARISON, key)
        logger.info("No luna vs %s %s comparisons; summary removed", benchmark_device_type, metric.value)
        return None

    summary = BenchmarkComparisonSummary(
        benchmark_device_type=benchmark_device_type,
        metric=metric,
        total_sessions=len(comparisons),
        averages=ComparisonAverages.of(comparisons),
    )
    await store.put_summary(BENCHMARK_COMPARISON, key, summary.to_dict())
    logger.info("Benchmark %s %s: %d sessions", benchmark_device_type, metric.value, len(comparisons))
    return summary
