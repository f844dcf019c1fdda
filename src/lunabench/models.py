"""Core data model: readings, sessions, per-device stats and comparisons.

Every document type serializes to a flat, JSON-friendly dict with camelCase
keys (``to_dict``) and can be rebuilt from one (``from_dict``), which is how
:mod:`lunabench.store` persists them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


class MetricType(str, Enum):
    """The physiological quantity a session measures."""

    HR = "HR"
    SPO2 = "SPO2"
    SLEEP = "Sleep"
    CALORIES = "Calories"
    STEPS = "Steps"

    @property
    def reading_field(self) -> str:
        """Key of the value inside a serialized reading's ``metrics`` payload."""
        return _READING_FIELDS[self]

    @property
    def stats_key(self) -> str:
        """Key of the statistics block inside serialized device stats."""
        return _STATS_KEYS[self]

    @classmethod
    def parse(cls, value: str | MetricType) -> MetricType:
        """Case-insensitive lookup (``"hr"``, ``"HR"`` and ``"Hr"`` all work)."""
        if isinstance(value, MetricType):
            return value
        for member in cls:
            if member.value.lower() == str(value).lower():
                return member
        raise ValueError(f"Unknown metric: {value!r}")


_READING_FIELDS = {
    MetricType.HR: "heartRate",
    MetricType.SPO2: "spo2",
    MetricType.SLEEP: "sleep",
    MetricType.CALORIES: "calories",
    MetricType.STEPS: "steps",
}

_STATS_KEYS = {
    MetricType.HR: "hr",
    MetricType.SPO2: "spo2",
    MetricType.SLEEP: "sleep",
    MetricType.CALORIES: "calories",
    MetricType.STEPS: "steps",
}


class DeviceType(str, Enum):
    """Devices with a registered parser."""

    LUNA = "luna"  # device under test
    POLAR = "polar"
    MASIMO = "masimo"


# Comparisons are always computed with this device as d1.
TEST_DEVICE = DeviceType.LUNA.value


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_instant(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


# ---------------------------------------------------------------------------
# Readings
# ---------------------------------------------------------------------------


@dataclass
class ReadingMeta:
    """Who/what/where a reading belongs to."""

    session_id: str
    user_id: str
    device_type: str = ""
    firmware_version: str | None = None
    activity_type: str = ""
    band_position: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "deviceType": self.device_type,
            "firmwareVersion": self.firmware_version,
            "activityType": self.activity_type,
            "bandPosition": self.band_position,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ReadingMeta:
        return cls(
            session_id=d["sessionId"],
            user_id=d["userId"],
            device_type=d.get("deviceType", ""),
            firmware_version=d.get("firmwareVersion"),
            activity_type=d.get("activityType", ""),
            band_position=d.get("bandPosition"),
        )


@dataclass
class NormalizedReading:
    """One metric sample at one-second resolution for one device.

    The payload is a single ``(metric, value)`` pair rather than a wide
    record with one slot per metric; ``value`` is None when the device
    reported nothing usable for that second.
    """

    meta: ReadingMeta
    timestamp: datetime
    metric: MetricType
    value: float | None
    is_valid: bool = True

    @property
    def epoch_ms(self) -> int:
        return round(self.timestamp.timestamp() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "meta": self.meta.to_dict(),
            "timestamp": _iso(self.timestamp),
            "metrics": {self.metric.reading_field: self.value},
            "isValid": self.is_valid,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any], metric: MetricType | None = None) -> NormalizedReading:
        payload = d.get("metrics", {})
        if metric is None:
            metric = next(
                (m for m in MetricType if m.reading_field in payload),
                MetricType.HR,
            )
        return cls(
            meta=ReadingMeta.from_dict(d["meta"]),
            timestamp=parse_instant(d["timestamp"]),
            metric=metric,
            value=payload.get(metric.reading_field),
            is_valid=d.get("isValid", True),
        )

    def __repr__(self) -> str:
        return (
            f"NormalizedReading({self.meta.device_type} {self.timestamp:%H:%M:%S} "
            f"{self.metric.value}={self.value})"
        )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@dataclass
class DeviceSnapshot:
    """A device as it was configured when the session was recorded."""

    device_type: str
    firmware_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"deviceType": self.device_type, "firmwareVersion": self.firmware_version}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> DeviceSnapshot:
        return cls(device_type=d["deviceType"], firmware_version=d.get("firmwareVersion"))


@dataclass
class SessionRecord:
    """A recording session shared by several devices."""

    session_id: str
    user_id: str
    activity_type: str
    metric: MetricType
    start_time: datetime
    end_time: datetime
    devices: list[DeviceSnapshot] = field(default_factory=list)
    benchmark_device_type: str | None = None
    band_position: str | None = None
    is_valid: bool = True

    @property
    def duration_sec(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def benchmark_device(self) -> str | None:
        """The reference device: explicit, else the first non-test device."""
        if self.benchmark_device_type:
            return self.benchmark_device_type
        for device in self.devices:
            if device.device_type != TEST_DEVICE:
                return device.device_type
        return None

    def firmware_for(self, device_type: str) -> str | None:
        for device in self.devices:
            if device.device_type == device_type:
                return device.firmware_version
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "activityType": self.activity_type,
            "metric": self.metric.value,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "durationSec": self.duration_sec,
            "devices": [d.to_dict() for d in self.devices],
            "benchmarkDeviceType": self.benchmark_device_type,
            "bandPosition": self.band_position,
            "isValid": self.is_valid,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SessionRecord:
        return cls(
            session_id=d["sessionId"],
            user_id=d["userId"],
            activity_type=d.get("activityType", ""),
            metric=MetricType.parse(d.get("metric", "HR")),
            start_time=parse_instant(d["startTime"]),
            end_time=parse_instant(d["endTime"]),
            devices=[DeviceSnapshot.from_dict(x) for x in d.get("devices", [])],
            benchmark_device_type=d.get("benchmarkDeviceType"),
            band_position=d.get("bandPosition"),
            is_valid=d.get("isValid", True),
        )


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


@dataclass
class MetricStats:
    """Descriptive statistics of one device's valid values."""

    min: float
    max: float
    avg: float
    median: float
    std_dev: float
    range: float

    def to_dict(self) -> dict[str, float]:
        return {
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "median": self.median,
            "stdDev": self.std_dev,
            "range": self.range,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> MetricStats:
        return cls(
            min=d["min"], max=d["max"], avg=d["avg"],
            median=d["median"], std_dev=d["stdDev"], range=d["range"],
        )


@dataclass
class DeviceStats:
    """Availability and value statistics for one device in one session."""

    device_type: str
    metric: MetricType
    firmware_version: str | None = None
    total_samples: int = 0
    valid_samples: int = 0
    null_samples: int = 0
    drop_rate: float = 0.0
    availability: float = 0.0
    stats: MetricStats | None = None  # None when there are no valid values

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "deviceType": self.device_type,
            "firmwareVersion": self.firmware_version,
            "totalSamples": self.total_samples,
            "validSamples": self.valid_samples,
            "nullSamples": self.null_samples,
            "dropRate": self.drop_rate,
            "availability": self.availability,
        }
        if self.stats is not None:
            d[self.metric.stats_key] = self.stats.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any], metric: MetricType) -> DeviceStats:
        block = d.get(metric.stats_key)
        return cls(
            device_type=d["deviceType"],
            metric=metric,
            firmware_version=d.get("firmwareVersion"),
            total_samples=d.get("totalSamples", 0),
            valid_samples=d.get("validSamples", 0),
            null_samples=d.get("nullSamples", 0),
            drop_rate=d.get("dropRate", 0.0),
            availability=d.get("availability", 0.0),
            stats=MetricStats.from_dict(block) if block else None,
        )


@dataclass
class BlandAltmanResult:
    """Difference/average series and 95% limits of agreement."""

    differences: list[float]
    averages: list[float]
    mean_difference: float
    std_difference: float
    upper_limit: float
    lower_limit: float
    percentage_in_limits: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "differences": list(self.differences),
            "averages": list(self.averages),
            "meanDifference": self.mean_difference,
            "stdDifference": self.std_difference,
            "upperLimit": self.upper_limit,
            "lowerLimit": self.lower_limit,
            "percentageInLimits": self.percentage_in_limits,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> BlandAltmanResult:
        return cls(
            differences=list(d["differences"]),
            averages=list(d["averages"]),
            mean_difference=d["meanDifference"],
            std_difference=d["stdDifference"],
            upper_limit=d["upperLimit"],
            lower_limit=d["lowerLimit"],
            percentage_in_limits=d["percentageInLimits"],
        )


# Serialized name -> attribute for the optional statistics of a comparison.
_PAIRWISE_STAT_FIELDS = {
    "toleranceMs": "tolerance_ms",
    "mae": "mae",
    "rmse": "rmse",
    "mape": "mape",
    "pearsonR": "pearson_r",
    "rSquared": "r_squared",
    "meanBias": "mean_bias",
    "sdDiff": "sd_diff",
    "upperLoA": "upper_loa",
    "lowerLoA": "lower_loa",
    "coverageVsD1": "coverage_vs_d1",
    "coverageVsD2": "coverage_vs_d2",
}


@dataclass
class PairwiseComparison:
    """Agreement of device ``d1`` (under test) with reference ``d2``.

    With ``matched_timestamps == 0`` every statistic is absent; that is the
    "no data" shape, not an error.
    """

    d1: str
    d2: str
    metric: MetricType
    matched_timestamps: int = 0
    tolerance_ms: int | None = None
    mae: float | None = None
    rmse: float | None = None
    mape: float | None = None
    pearson_r: float | None = None
    r_squared: float | None = None
    mean_bias: float | None = None
    sd_diff: float | None = None
    upper_loa: float | None = None
    lower_loa: float | None = None
    coverage_vs_d1: float | None = None
    coverage_vs_d2: float | None = None
    bland_altman: BlandAltmanResult | None = None

    @property
    def has_data(self) -> bool:
        return self.matched_timestamps > 0

    @property
    def accuracy_percent(self) -> float | None:
        """``100 - MAPE``; negative when MAPE exceeds 100."""
        return 100.0 - self.mape if self.mape is not None else None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "d1": self.d1,
            "d2": self.d2,
            "metric": self.metric.value,
            "matchedTimestamps": self.matched_timestamps,
        }
        if not self.has_data:
            return d
        for key, attr in _PAIRWISE_STAT_FIELDS.items():
            d[key] = getattr(self, attr)
        d["blandAltman"] = self.bland_altman.to_dict() if self.bland_altman else None
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PairwiseComparison:
        kwargs = {attr: d.get(key) for key, attr in _PAIRWISE_STAT_FIELDS.items()}
        ba = d.get("blandAltman")
        return cls(
            d1=d["d1"],
            d2=d["d2"],
            metric=MetricType.parse(d["metric"]),
            matched_timestamps=d.get("matchedTimestamps", 0),
            bland_altman=BlandAltmanResult.from_dict(ba) if ba else None,
            **kwargs,
        )

    def __repr__(self) -> str:
        if not self.has_data:
            return f"PairwiseComparison({self.d1} vs {self.d2}: no matches)"
        r = f"{self.pearson_r:.3f}" if self.pearson_r is not None else "n/a"
        return (
            f"PairwiseComparison({self.d1} vs {self.d2}, n={self.matched_timestamps}, "
            f"mae={self.mae:.2f}, bias={self.mean_bias:+.2f}, r={r})"
        )


@dataclass
class SessionAnalysis:
    """Computed analysis of one session (replaced wholesale on re-run)."""

    session_id: str
    user_id: str
    activity_type: str
    metric: MetricType
    start_time: datetime
    end_time: datetime
    device_stats: list[DeviceStats] = field(default_factory=list)
    pairwise_comparisons: list[PairwiseComparison] = field(default_factory=list)
    luna_accuracy_percent: float | None = None
    is_valid: bool = True
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def comparison_for(self, d2: str | None, d1: str = TEST_DEVICE) -> PairwiseComparison | None:
        """The ``d1`` vs ``d2`` comparison for this analysis' metric, if any."""
        if d2 is None:
            return None
        for comparison in self.pairwise_comparisons:
            if comparison.d1 == d1 and comparison.d2 == d2 and comparison.metric == self.metric:
                return comparison
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "activityType": self.activity_type,
            "metric": self.metric.value,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "deviceStats": [s.to_dict() for s in self.device_stats],
            "pairwiseComparisons": [p.to_dict() for p in self.pairwise_comparisons],
            "lunaAccuracyPercent": self.luna_accuracy_percent,
            "isValid": self.is_valid,
            "computedAt": _iso(self.computed_at),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SessionAnalysis:
        metric = MetricType.parse(d["metric"])
        return cls(
            session_id=d["sessionId"],
            user_id=d["userId"],
            activity_type=d.get("activityType", ""),
            metric=metric,
            start_time=parse_instant(d["startTime"]),
            end_time=parse_instant(d["endTime"]),
            device_stats=[DeviceStats.from_dict(s, metric) for s in d.get("deviceStats", [])],
            pairwise_comparisons=[
                PairwiseComparison.from_dict(p) for p in d.get("pairwiseComparisons", [])
            ],
            luna_accuracy_percent=d.get("lunaAccuracyPercent"),
            is_valid=d.get("isValid", True),
            computed_at=parse_instant(d["computedAt"]),
        )
