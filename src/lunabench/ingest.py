"""Session ingestion pipeline: parse -> store readings -> analyze -> roll up.

Device files are parsed concurrently in worker threads. Readings are
written only after every parse has finished, and analysis starts only after
every write has completed. A device whose file is unusable is reported and
left out; the other devices still go through. Analysis and rollup failures
are logged and reported but never undo the stored readings.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from lunabench.analysis import analyze_session
from lunabench.config import Settings, get_settings
from lunabench.errors import ParseError, SessionNotFoundError, UnsupportedDeviceError
from lunabench.models import TEST_DEVICE, ReadingMeta, SessionAnalysis, SessionRecord
from lunabench.parsers import ParseResult, ParseStats, parse_file
from lunabench.rollups import refresh_rollups_for_session
from lunabench.store import Store

logger = logging.getLogger(__name__)


@dataclass
class DeviceFile:
    """One uploaded export and the device that produced it."""

    device_type: str
    path: Path

    def __post_init__(self) -> None:
        self.device_type = self.device_type.lower()
        self.path = Path(self.path)


@dataclass
class DeviceOutcome:
    device_type: str
    path: Path
    readings: int = 0
    stats: ParseStats | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "deviceType": self.device_type,
            "path": str(self.path),
            "readings": self.readings,
            "stats": self.stats.to_dict() if self.stats else None,
            "error": self.error,
        }


@dataclass
class IngestReport:
    session_id: str
    devices: list[DeviceOutcome] = field(default_factory=list)
    analysis: SessionAnalysis | None = None
    rollups: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def failed_devices(self) -> list[str]:
        return [d.device_type for d in self.devices if not d.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "devices": [d.to_dict() for d in self.devices],
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "rollups": list(self.rollups),
            "errors": list(self.errors),
        }


@dataclass
class DeletionReport:
    session_id: str
    readings_deleted: int
    rollups: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "deletedSessionId": self.session_id,
            "readingsDeleted": self.readings_deleted,
            "recalculated": list(self.rollups),
        }


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


def _meta_for(session: SessionRecord, device_type: str) -> ReadingMeta:
    return ReadingMeta(
        session_id=session.session_id,
        user_id=session.user_id,
        device_type=device_type,
        firmware_version=session.firmware_for(device_type),
        activity_type=session.activity_type,
        band_position=session.band_position,
    )


async def _parse_device(
    session: SessionRecord, device_file: DeviceFile, settings: Settings
) -> tuple[DeviceOutcome, ParseResult | None]:
    outcome = DeviceOutcome(device_file.device_type, device_file.path)
    try:
        result = await asyncio.to_thread(
            parse_file,
            device_file.device_type,
            session.metric,
            device_file.path,
            _meta_for(session, device_file.device_type),
            session.start_time,
            session.end_time,
            settings.clock_offset,
        )
    except (ParseError, UnsupportedDeviceError, OSError) as exc:
        logger.error("Session %s: %s file %s rejected: %s",
                     session.session_id, device_file.device_type, device_file.path, exc)
        outcome.error = str(exc)
        return outcome, None
    except Exception as exc:
        logger.exception("Session %s: %s parser crashed on %s",
                         session.session_id, device_file.device_type, device_file.path)
        outcome.error = f"{type(exc).__name__}: {exc}"
        return outcome, None

    outcome.readings = len(result)
    outcome.stats = result.stats
    return outcome, result


async def _analyze_and_roll_up(store: Store, session: SessionRecord, settings: Settings, report: IngestReport) -> None:
    try:
        report.analysis = await analyze_session(store, session.session_id, settings.match_tolerance_ms)
    except Exception as exc:
        logger.exception("Session %s: analysis failed", session.session_id)
        report.errors.append(f"analysis: {exc}")
        return

    devices = [c.d2 for c in report.analysis.pairwise_comparisons if c.d1 == TEST_DEVICE]
    try:
        report.rollups = await refresh_rollups_for_session(store, session, devices)
    except Exception as exc:
        logger.exception("Session %s: rollup refresh failed", session.session_id)
        report.errors.append(f"rollups: {exc}")


async def ingest_session(
    store: Store,
    session: SessionRecord,
    files: Sequence[DeviceFile],
    settings: Settings | None = None,
) -> IngestReport:
    """Store *session*, ingest its device files, analyze it and refresh rollups."""
    settings = settings or get_settings()
    report = IngestReport(session.session_id)

    await store.put_session(session)
    logger.info("Ingesting session %s (%s, %d files)", session.session_id, session.metric.value, len(files))

    parsed = await asyncio.gather(*(_parse_device(session, f, settings) for f in files))

    # A failed device contributes no readings, even over an earlier ingest
    for outcome, result in parsed:
        report.devices.append(outcome)
        readings = result.readings if result is not None else []
        await store.replace_readings(session.session_id, outcome.device_type, readings)

    if report.failed_devices:
        logger.warning("Session %s: failed devices %s", session.session_id, report.failed_devices)

    await _analyze_and_roll_up(store, session, settings, report)
    return report


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


async def delete_session(store: Store, session_id: str) -> DeletionReport:
    """Delete a session with its readings and analysis, then fix the rollups.

    Raises:
        SessionNotFoundError: if *session_id* is not in the store.
    """
    session = await store.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(f"Session {session_id} not found")

    analysis = await store.get_analysis(session_id)
    devices = None
    if analysis is not None:
        devices = [c.d2 for c in analysis.pairwise_comparisons if c.d1 == TEST_DEVICE]

    deleted = await store.delete_readings(session_id)
    await store.delete_analysis(session_id)
    await store.delete_session(session_id)
    logger.info("Deleted session %s (%d readings)", session_id, deleted)

    rollups = await refresh_rollups_for_session(store, session, devices)
    return DeletionReport(session_id, deleted, rollups)


async def sessions_missing_analysis(store: Store) -> list[SessionRecord]:
    """Sessions that were stored but never got an analysis."""
    sessions = await store.list_sessions()
    analyzed = {a.session_id for a in await store.list_analyses()}
    pending = [s for s in sessions if s.session_id not in analyzed]
    return sorted(pending, key=lambda s: (s.start_time, s.session_id))


async def reanalyze_session(
    store: Store,
    session_id: str,
    settings: Settings | None = None,
) -> IngestReport:
    """Re-run analysis and rollups for an already ingested session.

    Raises:
        SessionNotFoundError: if *session_id* is not in the store.
    """
    settings = settings or get_settings()
    session = await store.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(f"Session {session_id} not found")

    report = IngestReport(session_id)
    await _analyze_and_roll_up(store, session, settings, report)
    return report
