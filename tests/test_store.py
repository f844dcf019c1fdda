"""Tests for lunabench.store -- in-memory and JSON-directory stores."""

import asyncio
import json

import pytest

from lunabench.analysis import build_analysis
from lunabench.models import MetricType, SessionAnalysis
from lunabench.store import JsonStore, MemoryStore, summary_key

from tests.conftest import make_readings, make_session


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return JsonStore(tmp_path / "data")


def run(coro):
    return asyncio.run(coro)


class TestSummaryKey:
    def test_tuple(self):
        assert summary_key(("u1", "HR")) == "u1|HR"

    def test_string(self):
        assert summary_key("running") == "running"


class TestSessions:
    def test_put_get(self, any_store):
        session = make_session()
        run(any_store.put_session(session))
        got = run(any_store.get_session("s1"))
        assert got.session_id == "s1"
        assert got.start_time == session.start_time
        assert got.devices[0].firmware_version == "1.0.0"

    def test_missing(self, any_store):
        assert run(any_store.get_session("nope")) is None

    def test_list_filters(self, any_store):
        run(any_store.put_session(make_session("a", user_id="u1")))
        run(any_store.put_session(make_session("b", user_id="u2")))
        run(any_store.put_session(make_session("c", user_id="u1", metric=MetricType.SPO2)))
        ids = {s.session_id for s in run(any_store.list_sessions(user_id="u1", metric=MetricType.HR))}
        assert ids == {"a"}

    def test_delete(self, any_store):
        run(any_store.put_session(make_session()))
        assert run(any_store.delete_session("s1")) is True
        assert run(any_store.delete_session("s1")) is False


class TestReadings:
    def test_replace_per_device(self, any_store):
        run(any_store.put_session(make_session()))
        run(any_store.replace_readings("s1", "luna", make_readings("luna", [70, 71])))
        run(any_store.replace_readings("s1", "polar", make_readings("polar", [72])))
        run(any_store.replace_readings("s1", "luna", make_readings("luna", [None, 73, 74])))

        luna = run(any_store.get_readings("s1", "luna"))
        assert [r.value for r in luna] == [None, 73, 74]
        assert run(any_store.count_readings("s1")) == 4
        assert run(any_store.count_readings("s1", "polar")) == 1

    def test_delete_readings(self, any_store):
        run(any_store.put_session(make_session()))
        run(any_store.replace_readings("s1", "luna", make_readings("luna", [70, 71])))
        assert run(any_store.delete_readings("s1")) == 2
        assert run(any_store.get_readings("s1")) == []


class TestAnalyses:
    def test_put_replaces(self, any_store):
        session = make_session()
        readings = make_readings("luna", [70, 71]) + make_readings("polar", [72, 73])
        first = build_analysis(session, readings)
        run(any_store.put_analysis(first))
        second = build_analysis(session, readings[:1] + readings[2:])
        run(any_store.put_analysis(second))

        analyses = run(any_store.list_analyses())
        assert len(analyses) == 1
        assert analyses[0].device_stats[0].total_samples == 1
        assert isinstance(analyses[0], SessionAnalysis)

    def test_round_trip_comparison(self, any_store):
        session = make_session()
        readings = make_readings("luna", [70, 74, 69]) + make_readings("polar", [71, 72, 70])
        run(any_store.put_analysis(build_analysis(session, readings)))
        got = run(any_store.get_analysis("s1"))
        assert got.comparison_for("polar").matched_timestamps == 3

    def test_delete(self, any_store):
        run(any_store.put_analysis(build_analysis(make_session(), [])))
        assert run(any_store.delete_analysis("s1")) is True
        assert run(any_store.get_analysis("s1")) is None


class TestSummaries:
    def test_put_get_delete(self, any_store):
        run(any_store.put_summary("userAccuracy", ("u1", "HR"), {"totalSessions": 2}))
        assert run(any_store.get_summary("userAccuracy", "u1|HR")) == {"totalSessions": 2}
        assert list(run(any_store.list_summaries("userAccuracy"))) == ["u1|HR"]
        assert run(any_store.delete_summary("userAccuracy", ("u1", "HR"))) is True
        assert run(any_store.get_summary("userAccuracy", ("u1", "HR"))) is None


class TestJsonLayout:
    def test_files_on_disk(self, tmp_path):
        store = JsonStore(tmp_path)
        run(store.put_session(make_session()))
        run(store.replace_readings("s1", "luna", make_readings("luna", [70, 71])))

        sessions = json.loads((tmp_path / "sessions.json").read_text())
        assert sessions["s1"]["metric"] == "HR"
        lines = (tmp_path / "readings" / "s1.jsonl").read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["metrics"] == {"heartRate": 70}
