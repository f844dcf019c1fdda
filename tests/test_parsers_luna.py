"""Tests for the Luna HR and SpO2 parsers."""

from datetime import date, timedelta, timezone, datetime

import pytest

from lunabench.errors import ParseError
from lunabench.models import MetricType
from lunabench.parsers.base import date_from_filename, parse_wall_clock
from lunabench.parsers.luna_hr import LunaHeartRateParser
from lunabench.parsers.luna_spo2 import LunaSpO2Parser, weighted_spo2

from tests.conftest import (
    T0,
    make_meta,
    write_lines,
    write_luna_hr_csv,
    write_luna_raw_txt,
    write_luna_spo2_csv,
)

END = T0 + timedelta(seconds=59)


class TestWallClock:
    def test_bare_time_uses_default_date(self):
        ts = parse_wall_clock("10:00:05.500", date(2026, 3, 5))
        assert ts == datetime(2026, 3, 5, 10, 0, 5, 500000, tzinfo=timezone.utc)

    def test_full_datetime(self):
        ts = parse_wall_clock("2026-03-05 10:00:05", date(2000, 1, 1))
        assert ts == datetime(2026, 3, 5, 10, 0, 5, tzinfo=timezone.utc)

    def test_garbage(self):
        assert parse_wall_clock("not a time", date(2026, 3, 5)) is None

    def test_out_of_range_hour(self):
        assert parse_wall_clock("25:00:00", date(2026, 3, 5)) is None

    def test_date_from_filename(self, tmp_path):
        assert date_from_filename(tmp_path / "luna_2026-3-5.csv") == date(2026, 3, 5)

    def test_date_from_filename_default_today(self, tmp_path):
        assert date_from_filename(tmp_path / "luna.csv") == datetime.now(timezone.utc).date()


class TestLunaHeartRate:
    def test_buckets_rows_per_second(self, tmp_path):
        path = write_luna_hr_csv(tmp_path / "luna_2026-3-5.csv", [
            ("10:00:00.100", "70"),
            ("10:00:00.600", "74"),
            ("10:00:01.000", "71.333"),
        ])
        result = LunaHeartRateParser.parse(path, make_meta(), T0, END)
        assert len(result) == 2
        assert result.readings[0].timestamp == T0
        assert result.readings[0].value == 72.0
        assert result.readings[1].value == 71.33
        assert result.stats.accepted_rows == 3
        assert result.stats.buckets == 2

    def test_one_reading_per_second_sorted(self, tmp_path):
        path = write_luna_hr_csv(tmp_path / "luna_2026-3-5.csv", [
            ("10:00:02", "72"),
            ("10:00:00", "70"),
            ("10:00:01", "71"),
            ("10:00:00.900", "70"),
        ])
        result = LunaHeartRateParser.parse(path, make_meta(), T0, END)
        stamps = [r.timestamp for r in result]
        assert stamps == sorted(set(stamps))
        assert len(stamps) == 3

    def test_sentinel_255_becomes_null_bucket(self, tmp_path):
        path = write_luna_hr_csv(tmp_path / "luna_2026-3-5.csv", [
            ("10:00:00", "255"),
            ("10:00:01", "255"),
            ("10:00:01.500", "80"),
        ])
        result = LunaHeartRateParser.parse(path, make_meta(), T0, END)
        assert [r.value for r in result] == [None, 80.0]

    def test_skips_bad_rows(self, tmp_path):
        path = write_luna_hr_csv(tmp_path / "luna_2026-3-5.csv", [
            ("10:00:00", "70"),
            ("====", "===="),
            ("garbage", "70"),
            ("10:00:01", ""),
            ("10:00:02", "abc"),
        ])
        result = LunaHeartRateParser.parse(path, make_meta(), T0, END)
        assert len(result) == 1
        assert result.stats.total_rows == 5
        assert result.stats.skipped_rows == 4
        assert result.stats.invalid_timestamp_rows == 1
        assert result.stats.invalid_value_rows == 2

    def test_window_is_inclusive(self, tmp_path):
        path = write_luna_hr_csv(tmp_path / "luna_2026-3-5.csv", [
            ("09:59:59", "60"),
            ("10:00:00", "70"),
            ("10:00:59.900", "71"),
            ("10:01:00", "80"),
        ])
        result = LunaHeartRateParser.parse(path, make_meta(), T0, END)
        assert [r.value for r in result] == [70.0, 71.0]
        assert result.stats.out_of_window_rows == 2

    def test_naive_window_treated_as_utc(self, tmp_path):
        path = write_luna_hr_csv(tmp_path / "luna_2026-3-5.csv", [("10:00:00", "70"), ("10:01:00", "80")])
        result = LunaHeartRateParser.parse(
            path, make_meta(), datetime(2026, 3, 5, 10), datetime(2026, 3, 5, 10, 0, 59)
        )
        assert [r.value for r in result] == [70.0]
        assert result.readings[0].timestamp == T0

    def test_full_datetime_ignores_filename(self, tmp_path):
        path = write_luna_hr_csv(tmp_path / "luna_2020-1-1.csv", [("2026-03-05 10:00:10", "65")])
        result = LunaHeartRateParser.parse(path, make_meta(), T0, END)
        assert result.readings[0].timestamp == T0 + timedelta(seconds=10)

    def test_time_column_found_case_insensitively(self, tmp_path):
        path = write_luna_hr_csv(tmp_path / "luna_2026-3-5.csv", [("10:00:00", "70")], time_header="Local_TIME")
        assert len(LunaHeartRateParser.parse(path, make_meta(), T0, END)) == 1

    def test_missing_time_column(self, tmp_path):
        path = write_lines(tmp_path / "bad.csv", ["Stamp,Hrs", "10:00:00,70"])
        with pytest.raises(ParseError):
            LunaHeartRateParser.parse(path, make_meta(), T0, END)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")
        with pytest.raises(ParseError):
            LunaHeartRateParser.parse(path, make_meta(), T0, END)

    def test_meta_device_and_metric(self, tmp_path):
        path = write_luna_hr_csv(tmp_path / "luna_2026-3-5.csv", [("10:00:00", "70")])
        reading = LunaHeartRateParser.parse(path, make_meta(device_type="", firmware_version="2.1"), T0, END).readings[0]
        assert reading.meta.device_type == "luna"
        assert reading.meta.firmware_version == "2.1"
        assert reading.metric == MetricType.HR

    def test_headerless_txt(self, tmp_path):
        path = write_luna_raw_txt(tmp_path / "luna_2026-3-5.txt", [
            {"SySTime": "10:00:00", "Hrs": "70"},
            {"SySTime": "10:00:00.500", "Hrs": "72"},
        ])
        result = LunaHeartRateParser.parse(path, make_meta(), T0, END)
        assert [r.value for r in result] == [71.0]


class TestWeightedSpO2:
    def test_weighted_mean(self):
        # (96*1 + 99*2) / 3 = 98
        assert weighted_spo2([(96.0, 1.0), (99.0, 2.0)]) == 98.0

    def test_ignores_unusable_samples(self):
        assert weighted_spo2([(None, 3.0), (90.0, 0.0), (97.0, 1.0)]) == 97.0

    def test_no_usable_samples(self):
        assert weighted_spo2([(None, 0.0), (None, 2.0)]) is None

    def test_negative_quality_excluded(self):
        assert weighted_spo2([(90.0, -1.0), (97.0, 2.0)]) == 97.0
        assert weighted_spo2([(90.0, -1.0)]) is None

    def test_empty(self):
        assert weighted_spo2([]) is None


class TestLunaSpO2:
    def test_quality_weighted_bucket(self, tmp_path):
        path = write_luna_spo2_csv(tmp_path / "spo2.csv", [
            ("10:00:00.000", "96", "1"),
            ("10:00:00.500", "99", "2"),
        ])
        result = LunaSpO2Parser.parse(path, make_meta(), T0, END)
        assert len(result) == 1
        assert result.readings[0].value == 98.0
        assert result.readings[0].metric == MetricType.SPO2

    def test_zero_quality_keeps_null_bucket(self, tmp_path):
        path = write_luna_spo2_csv(tmp_path / "spo2.csv", [
            ("10:00:00", "97", "0"),
            ("10:00:01", "97", "5"),
        ])
        result = LunaSpO2Parser.parse(path, make_meta(), T0, END)
        assert [r.value for r in result] == [None, 97.0]
        assert result.stats.invalid_rows == 1

    def test_out_of_range_value_nulled(self, tmp_path):
        path = write_luna_spo2_csv(tmp_path / "spo2.csv", [
            ("10:00:00", "120", "5"),
            ("10:00:00.500", "95", "5"),
            ("10:00:01", "-1", "5"),
        ])
        result = LunaSpO2Parser.parse(path, make_meta(), T0, END)
        assert [r.value for r in result] == [95.0, None]

    def test_missing_quality_counts_as_zero(self, tmp_path):
        path = write_luna_spo2_csv(tmp_path / "spo2.csv", [("10:00:00", "97", "")])
        result = LunaSpO2Parser.parse(path, make_meta(), T0, END)
        assert [r.value for r in result] == [None]

    def test_bare_time_uses_session_date(self, tmp_path):
        # File name carries a different date; SpO2 must follow start_time
        path = write_luna_spo2_csv(tmp_path / "luna_2020-1-1.csv", [("10:00:03", "97", "5")])
        result = LunaSpO2Parser.parse(path, make_meta(), T0, END)
        assert result.readings[0].timestamp == T0 + timedelta(seconds=3)

    def test_rounded_to_two_decimals(self, tmp_path):
        path = write_luna_spo2_csv(tmp_path / "spo2.csv", [
            ("10:00:00", "97", "1"),
            ("10:00:00.300", "98", "1"),
            ("10:00:00.600", "98", "1"),
        ])
        result = LunaSpO2Parser.parse(path, make_meta(), T0, END)
        assert result.readings[0].value == 97.67

    def test_headerless_csv(self, tmp_path):
        path = write_luna_raw_txt(tmp_path / "raw.csv", [
            {"SySTime": "10:00:00", "Spo2": "97", "Spo2_Qi": "3"},
        ])
        result = LunaSpO2Parser.parse(path, make_meta(), T0, END)
        assert [r.value for r in result] == [97.0]
