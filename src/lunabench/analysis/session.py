"""Whole-session analysis: per-device statistics plus luna-vs-reference comparisons."""

from __future__ import annotations

import logging
from collections import defaultdict

from lunabench.analysis.pairwise import DEFAULT_TOLERANCE_MS, compare_devices
from lunabench.analysis.stats import calc_device_stats
from lunabench.errors import SessionNotFoundError
from lunabench.models import TEST_DEVICE, NormalizedReading, SessionAnalysis, SessionRecord
from lunabench.store import Store

logger = logging.getLogger(__name__)


def build_analysis(
    session: SessionRecord,
    readings: list[NormalizedReading],
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
) -> SessionAnalysis:
    """Compute the analysis of *session* from its already-loaded readings.

    Devices are listed in the order of the session's device snapshot, then
    any others in order of first appearance. Comparisons are only made when
    the test device has readings.
    """
    by_device: dict[str, list[NormalizedReading]] = defaultdict(list)
    for reading in readings:
        by_device[reading.meta.device_type].append(reading)

    declared = [d.device_type for d in session.devices if d.device_type in by_device]
    order = declared + [d for d in by_device if d not in declared]

    device_stats = [calc_device_stats(d, by_device[d], session.metric) for d in order]

    comparisons = []
    if TEST_DEVICE in by_device:
        for device in order:
            if device == TEST_DEVICE:
                continue
            comparisons.append(
                compare_devices(
                    TEST_DEVICE, by_device[TEST_DEVICE],
                    device, by_device[device],
                    session.metric, tolerance_ms,
                )
            )
    else:
        logger.warning("Session %s has no %s readings; skipping comparisons", session.session_id, TEST_DEVICE)

    analysis = SessionAnalysis(
        session_id=session.session_id,
        user_id=session.user_id,
        activity_type=session.activity_type,
        metric=session.metric,
        start_time=session.start_time,
        end_time=session.end_time,
        device_stats=device_stats,
        pairwise_comparisons=comparisons,
        is_valid=session.is_valid,
    )
    benchmark = analysis.comparison_for(session.benchmark_device)
    analysis.luna_accuracy_percent = benchmark.accuracy_percent if benchmark else None
    return analysis


async def analyze_session(
    store: Store,
    session_id: str,
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
) -> SessionAnalysis:
    """Load a session's readings, analyze them and replace the stored analysis.

    Raises:
        SessionNotFoundError: if *session_id* is not in the store.
    """
    session = await store.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(f"Session {session_id} not found")

    readings = await store.get_readings(session_id)
    logger.info("Analyzing session %s: %d readings", session_id, len(readings))

    analysis = build_analysis(session, readings, tolerance_ms)
    await store.put_analysis(analysis)
    return analysis
