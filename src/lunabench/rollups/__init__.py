"""Summary rollups over many session analyses.

Modules:
    common    -- shared averaging and breakdown helpers, store kinds
    user      -- per-user accuracy with activity/firmware/band breakdowns
    firmware  -- per luna firmware version
    activity  -- per activity type (heart rate only)
    benchmark -- luna vs one reference device
    admin     -- daily trend and global summary
"""

from __future__ import annotations

import logging
from typing import Iterable

from lunabench.models import TEST_DEVICE, MetricType, SessionRecord
from lunabench.rollups.common import (
    ACTIVITY_PERFORMANCE,
    BENCHMARK_COMPARISON,
    DAILY_TREND,
    FIRMWARE_PERFORMANCE,
    GLOBAL_SUMMARY,
    USER_ACCURACY,
    ComparisonAverages,
    AccuracyGroup,
)
from lunabench.rollups.user import UserAccuracySummary, update_user_accuracy_summary
from lunabench.rollups.firmware import FirmwarePerformance, update_firmware_performance
from lunabench.rollups.activity import ActivityPerformanceSummary, update_activity_performance
from lunabench.rollups.benchmark import BenchmarkComparisonSummary, update_benchmark_comparison
from lunabench.rollups.admin import (
    AdminDailyTrend,
    AdminGlobalSummary,
    update_daily_trend,
    update_global_summary,
)
from lunabench.store import Store

logger = logging.getLogger(__name__)

SUMMARY_KINDS = (
    USER_ACCURACY,
    FIRMWARE_PERFORMANCE,
    ACTIVITY_PERFORMANCE,
    BENCHMARK_COMPARISON,
    DAILY_TREND,
    GLOBAL_SUMMARY,
)


async def refresh_rollups_for_session(
    store: Store,
    session: SessionRecord,
    benchmark_devices: Iterable[str] | None = None,
) -> list[str]:
    """Recompute every summary *session* contributes to.

    *benchmark_devices* are the reference devices compared against luna in
    the session; they default to the session's non-luna devices. Works
    equally after the session has been deleted from the store.

    Returns the kinds of summary that were refreshed.
    """
    metric = session.metric
    if benchmark_devices is None:
        benchmark_devices = [d.device_type for d in session.devices if d.device_type != TEST_DEVICE]

    await update_user_accuracy_summary(store, session.user_id, metric)
    refreshed = [USER_ACCURACY]

    firmware = session.firmware_for(TEST_DEVICE)
    if firmware:
        await update_firmware_performance(store, firmware, metric)
        refreshed.append(FIRMWARE_PERFORMANCE)

    if metric == MetricType.HR and session.activity_type:
        await update_activity_performance(store, session.activity_type)
        refreshed.append(ACTIVITY_PERFORMANCE)

    devices = sorted(set(benchmark_devices))
    for device in devices:
        await update_benchmark_comparison(store, device, metric)
    if devices:
        refreshed.append(BENCHMARK_COMPARISON)

    await update_daily_trend(store, session.start_time, metric)
    await update_global_summary(store, metric)
    refreshed.extend([DAILY_TREND, GLOBAL_SUMMARY])

    logger.info("Refreshed rollups for session %s: %s", session.session_id, ", ".join(refreshed))
    return refreshed


__all__ = [
    "SUMMARY_KINDS",
    "refresh_rollups_for_session",
    "ComparisonAverages",
    "AccuracyGroup",
    "UserAccuracySummary",
    "update_user_accuracy_summary",
    "FirmwarePerformance",
    "update_firmware_performance",
    "ActivityPerformanceSummary",
    "update_activity_performance",
    "BenchmarkComparisonSummary",
    "update_benchmark_comparison",
    "AdminDailyTrend",
    "AdminGlobalSummary",
    "update_daily_trend",
    "update_global_summary",
]
