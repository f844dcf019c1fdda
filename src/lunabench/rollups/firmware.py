"""Luna firmware performance, keyed by ``(firmware_version, metric)``."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from lunabench.models import TEST_DEVICE, MetricType
from lunabench.rollups.common import (
    FIRMWARE_PERFORMANCE,
    AccuracyGroup,
    ComparisonAverages,
    analyses_by_session,
    group_accuracy,
    scored_sessions,
    utcnow,
)
from lunabench.store import Store

logger = logging.getLogger(__name__)


@dataclass
class FirmwarePerformance:
    firmware_version: str
    metric: MetricType
    total_sessions: int
    total_users: int
    overall: ComparisonAverages | None = None
    activity_wise: list[AccuracyGroup] = field(default_factory=list)
    computed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "firmwareVersion": self.firmware_version,
            "metric": self.metric.value,
            "totalSessions": self.total_sessions,
            "totalUsers": self.total_users,
            "overallAccuracy": (
                self.overall.to_dict("avgMAE", "avgRMSE", "avgMAPE", "avgPearson")
                if self.overall else None
            ),
            "activityWise": [g.to_dict("activityType") for g in self.activity_wise],
            "computedAt": self.computed_at.isoformat(),
        }


async def update_firmware_performance(
    store: Store,
    firmware_version: str,
    metric: MetricType = MetricType.HR,
) -> FirmwarePerformance | None:
    """Recompute performance of the luna firmware *firmware_version*.

    ``total_sessions`` counts the sessions with a scored luna-vs-benchmark
    comparison; ``total_users`` counts every user with an analysis on this
    firmware.
    """
    key = (firmware_version, metric.value)
    sessions = [
        s for s in await store.list_sessions(metric=metric)
        if s.firmware_for(TEST_DEVICE) == firmware_version
    ]
    analyses = analyses_by_session(await store.list_analyses(metric=metric))
    analyzed = [s for s in sessions if s.session_id in analyses]
    if not analyzed:
        await store.delete_summary(FIRMWARE_PERFORMANCE, key)
        logger.info("No analyzed sessions on firmware %s (%s); summary removed", firmware_version, metric.value)
        return None

    scored = [
        (s, a, c) for s, a, c in scored_sessions(analyzed, analyses) if c.mape is not None
    ]
    perf = FirmwarePerformance(
        firmware_version=firmware_version,
        metric=metric,
        total_sessions=len(scored),
        total_users=len({s.user_id for s in analyzed}),
    )
    if scored:
        perf.overall = ComparisonAverages.of([c for _, _, c in scored])
        perf.activity_wise = group_accuracy(
            ((s.activity_type, c.accuracy_percent, s.duration_sec) for s, _, c in scored),
            with_duration=False,
        )

    await store.put_summary(FIRMWARE_PERFORMANCE, key, perf.to_dict())
    logger.info("Firmware %s %s: %d scored sessions", firmware_version, metric.value, len(scored))
    return perf
