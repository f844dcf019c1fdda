"""Vendor file parsers producing per-second normalized readings.

Parsers are looked up by ``(device_type, metric)``; see :data:`PARSERS`.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

from lunabench.errors import UnsupportedDeviceError
from lunabench.models import DeviceType, MetricType, ReadingMeta
from lunabench.parsers.base import ParseResult, ParseStats
from lunabench.parsers.luna_hr import LunaHeartRateParser
from lunabench.parsers.luna_spo2 import LunaSpO2Parser
from lunabench.parsers.masimo import MasimoSpO2Parser
from lunabench.parsers.polar import PolarHeartRateParser

PARSERS = {
    (DeviceType.LUNA, MetricType.HR): LunaHeartRateParser,
    (DeviceType.LUNA, MetricType.SPO2): LunaSpO2Parser,
    (DeviceType.POLAR, MetricType.HR): PolarHeartRateParser,
    (DeviceType.MASIMO, MetricType.SPO2): MasimoSpO2Parser,
}


def get_parser(device_type: str | DeviceType, metric: str | MetricType):
    """Return the parser class for a device/metric pair.

    Raises:
        UnsupportedDeviceError: if no parser handles that combination.
    """
    device = getattr(device_type, "value", device_type)
    name = getattr(metric, "value", metric)
    try:
        key = (DeviceType(device.lower()), MetricType.parse(name))
    except ValueError:
        key = None
    if key not in PARSERS:
        raise UnsupportedDeviceError(f"No parser for device {device!r} with metric {name!r}")
    return PARSERS[key]


def parse_file(
    device_type: str | DeviceType,
    metric: str | MetricType,
    path: Path | str,
    meta: ReadingMeta,
    start_time: datetime,
    end_time: datetime,
    clock_offset: timedelta = timedelta(0),
) -> ParseResult:
    """Dispatch *path* to the matching parser."""
    parser = get_parser(device_type, metric)
    return parser.parse(path, meta, start_time, end_time, clock_offset)


__all__ = [
    "PARSERS",
    "get_parser",
    "parse_file",
    "ParseResult",
    "ParseStats",
    "LunaHeartRateParser",
    "LunaSpO2Parser",
    "MasimoSpO2Parser",
    "PolarHeartRateParser",
]
