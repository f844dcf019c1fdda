"""Heart-rate performance per activity type, keyed by ``activity_type``."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from lunabench.models import MetricType
from lunabench.rollups.common import (
    ACTIVITY_PERFORMANCE,
    ComparisonAverages,
    analyses_by_session,
    scored_sessions,
    utcnow,
)
from lunabench.store import Store

logger = logging.getLogger(__name__)


@dataclass
class ActivityPerformanceSummary:
    activity_type: str
    total_sessions: int
    averages: ComparisonAverages = field(default_factory=ComparisonAverages)
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "activityType": self.activity_type,
            "totalSessions": self.total_sessions,
            **self.averages.to_dict("avgMAE", "avgRMSE", "avgPearson", "avgCoveragePercent"),
            "lastUpdated": self.last_updated.isoformat(),
        }


async def update_activity_performance(store: Store, activity_type: str) -> ActivityPerformanceSummary | None:
    """Recompute the HR summary of *activity_type* over valid sessions."""
    sessions = [
        s for s in await store.list_sessions(metric=MetricType.HR)
        if s.activity_type == activity_type and s.is_valid
    ]
    if not sessions:
        await store.delete_summary(ACTIVITY_PERFORMANCE, activity_type)
        logger.info("No valid HR sessions for activity %s; summary removed", activity_type)
        return None

    analyses = analyses_by_session(await store.list_analyses(metric=MetricType.HR))
    compared = [
        analyses[s.session_id] for s in sessions
        if s.session_id in analyses
        and analyses[s.session_id].is_valid
        and analyses[s.session_id].pairwise_comparisons
    ]
    comparisons = [c for _, _, c in scored_sessions(sessions, analyses, valid_only=True)]

    summary = ActivityPerformanceSummary(
        activity_type=activity_type,
        total_sessions=len(compared),
        averages=ComparisonAverages.of(comparisons),
    )
    await store.put_summary(ACTIVITY_PERFORMANCE, activity_type, summary.to_dict())
    logger.info("Activity %s: %d compared sessions", activity_type, len(compared))
    return summary
