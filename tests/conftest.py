"""Shared fixtures and helpers for the lunabench test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from lunabench.models import (
    DeviceSnapshot,
    MetricType,
    NormalizedReading,
    ReadingMeta,
    SessionRecord,
)
from lunabench.parsers.base import LUNA_COLUMNS
from lunabench.store import MemoryStore

# 2026-03-05 10:00:00 UTC, the start of every synthetic session
T0 = datetime(2026, 3, 5, 10, 0, 0, tzinfo=timezone.utc)
T0_EPOCH = int(T0.timestamp())

# Luna heart rate wobble used by the end-to-end fixtures
HR_PATTERN = [0, 1, 2, 1, 0, -1, -2, -1]


# ---------------------------------------------------------------------------
# Model helpers
# ---------------------------------------------------------------------------


def make_meta(
    device_type: str = "luna",
    session_id: str = "s1",
    user_id: str = "u1",
    firmware_version: str | None = None,
) -> ReadingMeta:
    return ReadingMeta(
        session_id=session_id,
        user_id=user_id,
        device_type=device_type,
        firmware_version=firmware_version,
        activity_type="running",
    )


def make_readings(
    device_type: str,
    values: list[float | None],
    start: datetime = T0,
    step_sec: float = 1.0,
    metric: MetricType = MetricType.HR,
    session_id: str = "s1",
    user_id: str = "u1",
    firmware_version: str | None = None,
) -> list[NormalizedReading]:
    """One reading per value, *step_sec* apart."""
    meta = make_meta(device_type, session_id, user_id, firmware_version)
    return [
        NormalizedReading(meta, start + timedelta(seconds=i * step_sec), metric, v)
        for i, v in enumerate(values)
    ]


def make_session(
    session_id: str = "s1",
    user_id: str = "u1",
    activity_type: str = "running",
    metric: MetricType = MetricType.HR,
    start: datetime = T0,
    duration_sec: int = 59,
    devices: list[tuple[str, str | None]] | None = None,
    benchmark: str | None = None,
    band_position: str | None = "wrist",
    is_valid: bool = True,
) -> SessionRecord:
    if devices is None:
        reference = "polar" if metric == MetricType.HR else "masimo"
        devices = [("luna", "1.0.0"), (reference, None)]
    return SessionRecord(
        session_id=session_id,
        user_id=user_id,
        activity_type=activity_type,
        metric=metric,
        start_time=start,
        end_time=start + timedelta(seconds=duration_sec),
        devices=[DeviceSnapshot(d, fw) for d, fw in devices],
        benchmark_device_type=benchmark,
        band_position=band_position,
        is_valid=is_valid,
    )


def luna_hr_values(n: int = 60) -> list[float]:
    return [70.0 + HR_PATTERN[i % len(HR_PATTERN)] for i in range(n)]


# ---------------------------------------------------------------------------
# Vendor file writers
# ---------------------------------------------------------------------------


def write_lines(path: Path, lines: list[str]) -> Path:
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def write_luna_hr_csv(path: Path, rows: list[tuple[str, str]], time_header: str = "SySTime") -> Path:
    """Luna export with only the timestamp and ``Hrs`` columns."""
    return write_lines(path, [f"{time_header},Hrs"] + [f"{t},{hr}" for t, hr in rows])


def write_luna_spo2_csv(path: Path, rows: list[tuple[str, str, str]]) -> Path:
    """Luna export with ``(time, Spo2, Spo2_Qi)`` rows."""
    return write_lines(path, ["SySTime,Spo2,Spo2_Qi"] + [f"{t},{v},{q}" for t, v, q in rows])


def write_luna_raw_txt(path: Path, rows: list[dict[str, str]]) -> Path:
    """Header-less Luna dump; missing columns are written as 0."""
    lines = [",".join(row.get(col, "0") for col in LUNA_COLUMNS) for row in rows]
    return write_lines(path, lines)


def write_masimo_csv(path: Path, rows: list[tuple[str, str, str]], with_perfusion: bool = True) -> Path:
    """Masimo export with ``(Timestamp, O2 Saturation, Perfusion Index)`` rows."""
    if with_perfusion:
        header = "Session,Index,Timestamp,Date,Time,O2 Saturation,Pulse Rate,Perfusion Index"
        body = [f"1,{i},{ts},,,{spo2},72,{pi}" for i, (ts, spo2, pi) in enumerate(rows)]
    else:
        header = "Session,Index,Timestamp,Date,Time,O2 Saturation,Pulse Rate"
        body = [f"1,{i},{ts},,,{spo2},72" for i, (ts, spo2, _) in enumerate(rows)]
    return write_lines(path, [header] + body)


def write_polar_csv(
    path: Path,
    rows: list[tuple[str, str]],
    date: str = "05-03-2026",
    start: str = "10:00:00",
) -> Path:
    """Polar export: metadata block, blank line, then ``(elapsed, hr)`` samples."""
    lines = [
        "Name,Sport,Date,Start time,Duration,Total distance (km)",
        f"Tester,RUNNING,{date},{start},00:01:00,0.20",
        "",
        "Sample rate,Time,HR (bpm),Speed (km/h)",
    ]
    lines += [f"1,{elapsed},{hr},8.5" for elapsed, hr in rows]
    return write_lines(path, lines)


def write_golden_pair(tmp_path: Path) -> tuple[Path, Path]:
    """60 s of Luna HR (two raw rows per second) and Polar HR reading 2 bpm higher."""
    values = luna_hr_values()
    luna_rows = []
    for sec, v in enumerate(values):
        luna_rows.append((f"10:00:{sec:02d}.250", f"{v - 1:g}"))
        luna_rows.append((f"10:00:{sec:02d}.750", f"{v + 1:g}"))
    luna = write_luna_hr_csv(tmp_path / "luna_2026-3-5.csv", luna_rows)
    polar = write_polar_csv(
        tmp_path / "polar.csv",
        [(f"00:00:{sec:02d}", f"{v + 2:g}") for sec, v in enumerate(values)],
    )
    return luna, polar


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def golden_files(tmp_path: Path) -> tuple[Path, Path]:
    return write_golden_pair(tmp_path)
