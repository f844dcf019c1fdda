"""Per-user accuracy summary, keyed by ``(user_id, metric)``."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from lunabench.models import TEST_DEVICE, MetricType, SessionAnalysis, SessionRecord
from lunabench.rollups.common import (
    USER_ACCURACY,
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
class SessionAccuracy:
    """A single session's accuracy, for best/worst reporting."""

    session_id: str
    activity_type: str
    accuracy_percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "activityType": self.activity_type,
            "accuracyPercent": self.accuracy_percent,
        }


@dataclass
class UserAccuracySummary:
    user_id: str
    metric: MetricType
    total_sessions: int
    overall: ComparisonAverages | None = None
    best_session: SessionAccuracy | None = None
    worst_session: SessionAccuracy | None = None
    activity_wise: list[AccuracyGroup] = field(default_factory=list)
    firmware_wise: list[AccuracyGroup] = field(default_factory=list)
    band_position_wise: list[AccuracyGroup] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "metric": self.metric.value,
            "totalSessions": self.total_sessions,
            "overallAccuracy": (
                self.overall.to_dict("avgMAE", "avgRMSE", "avgPearson", "avgMAPE")
                if self.overall else None
            ),
            "bestSession": self.best_session.to_dict() if self.best_session else None,
            "worstSession": self.worst_session.to_dict() if self.worst_session else None,
            "activityWiseAccuracy": [g.to_dict("activityType") for g in self.activity_wise],
            "firmwareWiseAccuracy": [g.to_dict("firmwareVersion") for g in self.firmware_wise],
            "bandPositionWiseAccuracy": [g.to_dict("bandPosition") for g in self.band_position_wise],
            "lastUpdated": self.last_updated.isoformat(),
        }


def _luna_firmware(session: SessionRecord, analysis: SessionAnalysis) -> str | None:
    for stats in analysis.device_stats:
        if stats.device_type == TEST_DEVICE and stats.firmware_version:
            return stats.firmware_version
    return session.firmware_for(TEST_DEVICE)


async def update_user_accuracy_summary(
    store: Store,
    user_id: str,
    metric: MetricType = MetricType.HR,
) -> UserAccuracySummary | None:
    """Recompute the accuracy summary of *user_id* for *metric*.

    Only sessions whose luna-vs-benchmark comparison has a MAPE are scored.
    The best session has the lowest MAPE; ties keep the earliest session.
    """
    key = (user_id, metric.value)
    sessions = sorted(
        await store.list_sessions(user_id=user_id, metric=metric),
        key=lambda s: (s.start_time, s.session_id),
    )
    if not sessions:
        await store.delete_summary(USER_ACCURACY, key)
        logger.info("No %s sessions left for user %s; summary removed", metric.value, user_id)
        return None

    analyses = analyses_by_session(await store.list_analyses(user_id=user_id, metric=metric))
    scored = [
        (s, a, c) for s, a, c in scored_sessions(sessions, analyses) if c.mape is not None
    ]
    summary = UserAccuracySummary(user_id=user_id, metric=metric, total_sessions=len(sessions))

    if scored:
        summary.overall = ComparisonAverages.of([c for _, _, c in scored])
        best = min(scored, key=lambda t: t[2].mape)
        worst = max(scored, key=lambda t: t[2].mape)
        summary.best_session = SessionAccuracy(
            best[0].session_id, best[0].activity_type, best[2].accuracy_percent
        )
        summary.worst_session = SessionAccuracy(
            worst[0].session_id, worst[0].activity_type, worst[2].accuracy_percent
        )
        summary.activity_wise = group_accuracy(
            (s.activity_type, c.accuracy_percent, s.duration_sec) for s, _, c in scored
        )
        summary.firmware_wise = group_accuracy(
            ((_luna_firmware(s, a), c.accuracy_percent, s.duration_sec) for s, a, c in scored),
            with_duration=False,
        )
        summary.band_position_wise = group_accuracy(
            (s.band_position, c.accuracy_percent, s.duration_sec) for s, _, c in scored
        )

    await store.put_summary(USER_ACCURACY, key, summary.to_dict())
    logger.info(
        "User %s %s summary: %d sessions, %d scored", user_id, metric.value, len(sessions), len(scored)
    )
    return summary
