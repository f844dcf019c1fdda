"""Fleet-wide rollups: one summary per UTC day, and one overall."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from lunabench.models import TEST_DEVICE, MetricType, as_utc
from lunabench.rollups.common import (
    DAILY_TREND,
    GLOBAL_SUMMARY,
    ComparisonAverages,
    analyses_by_session,
    scored_sessions,
    utcnow,
)
from lunabench.store import Store

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Daily trend
# ---------------------------------------------------------------------------


@dataclass
class AdminDailyTrend:
    day: date
    metric: MetricType
    total_sessions: int
    total_users: int
    luna: ComparisonAverages = field(default_factory=ComparisonAverages)
    computed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "metric": self.metric.value,
            "totalSessions": self.total_sessions,
            "totalUsers": self.total_users,
            "lunaStats": self.luna.to_dict("avgMAE", "avgRMSE", "avgPearson", "avgCoveragePercent"),
            "computedAt": self.computed_at.isoformat(),
        }


async def update_daily_trend(
    store: Store,
    day: date | datetime,
    metric: MetricType = MetricType.HR,
) -> AdminDailyTrend | None:
    """Recompute the trend point for the UTC date of *day*.

    A session belongs to the day its ``start_time`` falls on, in UTC.
    """
    if isinstance(day, datetime):
        day = as_utc(day).date()
    key = (day.isoformat(), metric.value)

    sessions = [
        s for s in await store.list_sessions(metric=metric)
        if s.is_valid and as_utc(s.start_time).date() == day
    ]
    if not sessions:
        await store.delete_summary(DAILY_TREND, key)
        logger.info("No valid %s sessions on %s; trend point removed", metric.value, day)
        return None

    analyses = analyses_by_session(await store.list_analyses(metric=metric))
    comparisons = [c for _, _, c in scored_sessions(sessions, analyses, valid_only=True)]
    trend = AdminDailyTrend(
        day=day,
        metric=metric,
        total_sessions=len(sessions),
        total_users=len({s.user_id for s in sessions}),
        luna=ComparisonAverages.of(comparisons),
    )
    await store.put_summary(DAILY_TREND, key, trend.to_dict())
    logger.info("Daily trend %s %s: %d sessions", day, metric.value, len(sessions))
    return trend


# ---------------------------------------------------------------------------
# Global summary
# ---------------------------------------------------------------------------


@dataclass
class AdminGlobalSummary:
    metric: MetricType
    total_users: int
    total_sessions: int
    total_readings: int
    luna: ComparisonAverages = field(default_factory=ComparisonAverages)
    computed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric.value,
            "totalUsers": self.total_users,
            "totalSessions": self.total_sessions,
            "totalReadings": self.total_readings,
            "lunaStats": self.luna.to_dict(),
            "computedAt": self.computed_at.isoformat(),
        }


async def update_global_summary(store: Store, metric: MetricType = MetricType.HR) -> AdminGlobalSummary | None:
    """Recompute the overall luna summary for *metric* across valid sessions.

    ``total_readings`` counts the luna readings stored for those sessions.
    """
    sessions = [s for s in await store.list_sessions(metric=metric) if s.is_valid]
    if not sessions:
        await store.delete_summary(GLOBAL_SUMMARY, metric.value)
        logger.info("No valid %s sessions; global summary removed", metric.value)
        return None

    total_readings = 0
    for session in sessions:
        total_readings += await store.count_readings(session.session_id, TEST_DEVICE)

    analyses = analyses_by_session(await store.list_analyses(metric=metric))
    comparisons = [c for _, _, c in scored_sessions(sessions, analyses, valid_only=True)]
    summary = AdminGlobalSummary(
        metric=metric,
        total_users=len({s.user_id for s in sessions}),
        total_sessions=len(sessions),
        total_readings=total_readings,
        luna=ComparisonAverages.of(comparisons),
    )
    await store.put_summary(GLOBAL_SUMMARY, metric.value, summary.to_dict())
    logger.info(
        "Global %s summary: %d users, %d sessions, %d luna readings",
        metric.value, summary.total_users, summary.total_sessions, total_readings,
    )
    return summary
