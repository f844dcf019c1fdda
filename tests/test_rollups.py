"""Tests for lunabench.rollups -- summary recomputation over stored analyses."""

import asyncio
import json
from datetime import timedelta

import pytest

from lunabench.analysis import analyze_session
from lunabench.models import MetricType
from lunabench.rollups import (
    refresh_rollups_for_session,
    update_activity_performance,
    update_benchmark_comparison,
    update_daily_trend,
    update_firmware_performance,
    update_global_summary,
    update_user_accuracy_summary,
)
from lunabench.rollups.common import (
    ACTIVITY_PERFORMANCE,
    USER_ACCURACY,
    group_accuracy,
    mean_or_none,
)

from tests.conftest import T0, make_readings, make_session


def run(coro):
    return asyncio.run(coro)


async def _add_session(store, session, luna_values, ref_values, ref_device="polar"):
    """Store a session with luna/reference readings and analyze it."""
    await store.put_session(session)
    kwargs = dict(start=session.start_time, metric=session.metric,
                  session_id=session.session_id, user_id=session.user_id)
    fw = session.firmware_for("luna")
    await store.replace_readings(
        session.session_id, "luna", make_readings("luna", luna_values, firmware_version=fw, **kwargs)
    )
    await store.replace_readings(
        session.session_id, ref_device, make_readings(ref_device, ref_values, **kwargs)
    )
    return await analyze_session(store, session.session_id)


def _strip_time(doc):
    return {k: v for k, v in doc.items() if k not in ("lastUpdated", "computedAt")}


@pytest.fixture
def populated(store):
    """Three sessions for two users: MAPE 10%, 20% and 50%."""
    async def _setup():
        await _add_session(
            store, make_session("s1", "u1", "running", devices=[("luna", "1.0"), ("polar", None)]),
            [90.0, 90.0], [100.0, 100.0],
        )
        await _add_session(
            store,
            make_session("s2", "u1", "cycling", start=T0 + timedelta(hours=2),
                         devices=[("luna", "1.1"), ("polar", None)], band_position="ankle"),
            [80.0, 80.0], [100.0, 100.0],
        )
        await _add_session(
            store,
            make_session("s3", "u2", "running", start=T0 + timedelta(days=1),
                         devices=[("luna", "1.0"), ("polar", None)]),
            [50.0, 150.0], [100.0, 100.0],
        )
    run(_setup())
    return store


class TestHelpers:
    def test_mean_or_none(self):
        assert mean_or_none([1.0, None, 3.0]) == 2.0
        assert mean_or_none([None]) is None

    def test_group_accuracy_sorted(self):
        groups = group_accuracy([("b", 80.0, 10.0), ("a", 90.0, 5.0), ("b", 70.0, 10.0), (None, 1.0, 1.0)])
        assert [g.key for g in groups] == ["a", "b"]
        assert groups[1].avg_accuracy == 75.0
        assert groups[1].total_sessions == 2
        assert groups[1].total_duration_sec == 20.0


class TestUserAccuracy:
    def test_summary(self, populated):
        s = run(update_user_accuracy_summary(populated, "u1", MetricType.HR))
        assert s.total_sessions == 2
        assert s.overall.avg_mape == pytest.approx(15.0)
        assert s.overall.avg_mae == pytest.approx(15.0)
        assert s.best_session.session_id == "s1"
        assert s.best_session.accuracy_percent == pytest.approx(90.0)
        assert s.worst_session.session_id == "s2"
        assert [g.key for g in s.activity_wise] == ["cycling", "running"]
        assert [g.key for g in s.firmware_wise] == ["1.0", "1.1"]
        assert s.firmware_wise[0].total_duration_sec is None
        assert [g.key for g in s.band_position_wise] == ["ankle", "wrist"]

    def test_stored_document(self, populated):
        run(update_user_accuracy_summary(populated, "u1", MetricType.HR))
        doc = run(populated.get_summary(USER_ACCURACY, ("u1", "HR")))
        assert doc["userId"] == "u1"
        assert doc["activityWiseAccuracy"][0] == {
            "activityType": "cycling", "avgAccuracy": pytest.approx(80.0),
            "totalSessions": 1, "totalDurationSec": 59.0,
        }
        assert "totalDurationSec" not in doc["firmwareWiseAccuracy"][0]

    def test_idempotent(self, populated):
        run(update_user_accuracy_summary(populated, "u1", MetricType.HR))
        first = run(populated.get_summary(USER_ACCURACY, ("u1", "HR")))
        run(update_user_accuracy_summary(populated, "u1", MetricType.HR))
        second = run(populated.get_summary(USER_ACCURACY, ("u1", "HR")))
        assert json.dumps(_strip_time(first), sort_keys=True) == json.dumps(_strip_time(second), sort_keys=True)

    def test_sessions_without_analyses(self, store):
        run(store.put_session(make_session("s9", "u9")))
        s = run(update_user_accuracy_summary(store, "u9", MetricType.HR))
        assert s.total_sessions == 1
        assert s.overall is None
        assert s.activity_wise == []
        assert s.best_session is None

    def test_no_sessions_removes_summary(self, store):
        run(store.put_summary(USER_ACCURACY, ("u9", "HR"), {"stale": True}))
        assert run(update_user_accuracy_summary(store, "u9", MetricType.HR)) is None
        assert run(store.get_summary(USER_ACCURACY, ("u9", "HR"))) is None

    def test_negative_accuracy(self, populated):
        # s3: luna 50/150 vs 100/100 -> MAPE 50%; add one with MAPE 150%
        async def _more():
            await _add_session(
                populated, make_session("s4", "u2", "running", start=T0 + timedelta(days=1, hours=1)),
                [250.0, 250.0], [100.0, 100.0],
            )
        run(_more())
        s = run(update_user_accuracy_summary(populated, "u2", MetricType.HR))
        assert s.worst_session.accuracy_percent == pytest.approx(-50.0)


class TestFirmware:
    def test_summary(self, populated):
        perf = run(update_firmware_performance(populated, "1.0", MetricType.HR))
        assert perf.total_sessions == 2
        assert perf.total_users == 2
        assert perf.overall.avg_mape == pytest.approx(30.0)
        assert [g.key for g in perf.activity_wise] == ["running"]

    def test_unknown_firmware(self, populated):
        assert run(update_firmware_performance(populated, "9.9", MetricType.HR)) is None


class TestActivity:
    def test_summary(self, populated):
        summary = run(update_activity_performance(populated, "running"))
        assert summary.total_sessions == 2
        assert summary.averages.avg_mae == pytest.approx(30.0)
        assert summary.averages.avg_coverage_percent == pytest.approx(100.0)
        doc = run(populated.get_summary(ACTIVITY_PERFORMANCE, "running"))
        assert set(doc) == {
            "activityType", "totalSessions", "avgMAE", "avgRMSE",
            "avgPearson", "avgCoveragePercent", "lastUpdated",
        }

    def test_invalid_sessions_excluded(self, store):
        async def _setup():
            await _add_session(store, make_session("x", is_valid=False), [90.0], [100.0])
        run(_setup())
        assert run(update_activity_performance(store, "running")) is None


class TestBenchmark:
    def test_summary(self, populated):
        summary = run(update_benchmark_comparison(populated, "polar", MetricType.HR))
        assert summary.total_sessions == 3
        assert summary.averages.avg_bias == pytest.approx((-10 - 20 + 0) / 3)

    def test_no_comparisons(self, populated):
        assert run(update_benchmark_comparison(populated, "masimo", MetricType.HR)) is None


class TestAdmin:
    def test_daily_trend(self, populated):
        trend = run(update_daily_trend(populated, T0, MetricType.HR))
        assert trend.total_sessions == 2
        assert trend.total_users == 1
        assert trend.luna.avg_mae == pytest.approx(15.0)
        assert trend.to_dict()["date"] == "2026-03-05"

    def test_daily_trend_empty_day(self, populated):
        assert run(update_daily_trend(populated, T0 - timedelta(days=3), MetricType.HR)) is None

    def test_global(self, populated):
        summary = run(update_global_summary(populated, MetricType.HR))
        assert summary.total_users == 2
        assert summary.total_sessions == 3
        assert summary.total_readings == 6
        assert summary.luna.avg_mape == pytest.approx((10 + 20 + 50) / 3)

    def test_global_other_metric_empty(self, populated):
        assert run(update_global_summary(populated, MetricType.SPO2)) is None


class TestRefresh:
    def test_refresh_all(self, populated):
        session = run(populated.get_session("s1"))
        kinds = run(refresh_rollups_for_session(populated, session, ["polar"]))
        assert kinds == [
            "userAccuracy", "firmwarePerformance", "activityPerformance",
            "benchmarkComparison", "dailyTrend", "globalSummary",
        ]
        assert run(populated.get_summary("firmwarePerformance", ("1.0", "HR"))) is not None
        assert run(populated.get_summary("dailyTrend", ("2026-03-05", "HR"))) is not None

    def test_refresh_twice_identical(self, populated):
        session = run(populated.get_session("s2"))

        async def _snapshot():
            await refresh_rollups_for_session(populated, session)
            return {
                kind: {k: _strip_time(v) for k, v in (await populated.list_summaries(kind)).items()}
                for kind in ("userAccuracy", "firmwarePerformance", "benchmarkComparison", "globalSummary")
            }

        assert run(_snapshot()) == run(_snapshot())
