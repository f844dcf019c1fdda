"""Persistence for sessions, readings, analyses and rollup summaries.

:class:`Store` is the async interface the pipeline talks to.
:class:`MemoryStore` keeps everything in dicts; :class:`JsonStore` writes a
directory::

    <root>/sessions.json        {session_id: session}
    <root>/analyses.json        {session_id: analysis}
    <root>/summaries.json       {kind: {key: summary}}
    <root>/readings/<id>.jsonl  one reading per line

File I/O runs in a worker thread so the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Sequence

from lunabench.models import MetricType, NormalizedReading, SessionAnalysis, SessionRecord

logger = logging.getLogger(__name__)

SummaryKey = tuple[str, ...]


def summary_key(key: SummaryKey | str) -> str:
    """Flatten a composite summary key (e.g. ``("u1", "HR")``) to ``"u1|HR"``."""
    if isinstance(key, str):
        return key
    return "|".join(key)


class Store(ABC):
    """Async document store used by ingestion, analysis and rollups."""

    # -- sessions --------------------------------------------------------

    @abstractmethod
    async def put_session(self, session: SessionRecord) -> None: ...

    @abstractmethod
    async def get_session(self, session_id: str) -> SessionRecord | None: ...

    @abstractmethod
    async def list_sessions(
        self, user_id: str | None = None, metric: MetricType | None = None
    ) -> list[SessionRecord]: ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool: ...

    # -- readings --------------------------------------------------------

    @abstractmethod
    async def replace_readings(
        self, session_id: str, device_type: str, readings: Sequence[NormalizedReading]
    ) -> None:
        """Replace every stored reading of *device_type* in *session_id*."""

    @abstractmethod
    async def get_readings(
        self, session_id: str, device_type: str | None = None
    ) -> list[NormalizedReading]: ...

    @abstractmethod
    async def delete_readings(self, session_id: str) -> int: ...

    async def count_readings(self, session_id: str, device_type: str | None = None) -> int:
        return len(await self.get_readings(session_id, device_type))

    # -- analyses --------------------------------------------------------

    @abstractmethod
    async def put_analysis(self, analysis: SessionAnalysis) -> None:
        """Store *analysis*, replacing any previous one for the session."""

    @abstractmethod
    async def get_analysis(self, session_id: str) -> SessionAnalysis | None: ...

    @abstractmethod
    async def list_analyses(
        self, user_id: str | None = None, metric: MetricType | None = None
    ) -> list[SessionAnalysis]: ...

    @abstractmethod
    async def delete_analysis(self, session_id: str) -> bool: ...

    # -- summaries -------------------------------------------------------

    @abstractmethod
    async def put_summary(self, kind: str, key: SummaryKey | str, doc: dict[str, Any]) -> None: ...

    @abstractmethod
    async def get_summary(self, kind: str, key: SummaryKey | str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def list_summaries(self, kind: str) -> dict[str, dict[str, Any]]: ...

    @abstractmethod
    async def delete_summary(self, kind: str, key: SummaryKey | str) -> bool: ...


def _matches(doc: SessionRecord | SessionAnalysis, user_id: str | None, metric: MetricType | None) -> bool:
    if user_id is not None and doc.user_id != user_id:
        return False
    if metric is not None and doc.metric != metric:
        return False
    return True


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class MemoryStore(Store):
    """Dict-backed store. Documents are copied in and out."""

    def __init__(self) -> None:
        self.sessions: dict[str, SessionRecord] = {}
        self.readings: dict[str, dict[str, list[NormalizedReading]]] = {}
        self.analyses: dict[str, SessionAnalysis] = {}
        self.summaries: dict[str, dict[str, dict[str, Any]]] = {}

    async def put_session(self, session: SessionRecord) -> None:
        self.sessions[session.session_id] = copy.deepcopy(session)

    async def get_session(self, session_id: str) -> SessionRecord | None:
        session = self.sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def list_sessions(self, user_id=None, metric=None) -> list[SessionRecord]:
        return [copy.deepcopy(s) for s in self.sessions.values() if _matches(s, user_id, metric)]

    async def delete_session(self, session_id: str) -> bool:
        return self.sessions.pop(session_id, None) is not None

    async def replace_readings(self, session_id, device_type, readings) -> None:
        self.readings.setdefault(session_id, {})[device_type] = list(readings)

    async def get_readings(self, session_id, device_type=None) -> list[NormalizedReading]:
        by_device = self.readings.get(session_id, {})
        if device_type is not None:
            return list(by_device.get(device_type, []))
        return [r for rows in by_device.values() for r in rows]

    async def delete_readings(self, session_id: str) -> int:
        by_device = self.readings.pop(session_id, {})
        return sum(len(rows) for rows in by_device.values())

    async def put_analysis(self, analysis: SessionAnalysis) -> None:
        self.analyses[analysis.session_id] = copy.deepcopy(analysis)

    async def get_analysis(self, session_id: str) -> SessionAnalysis | None:
        analysis = self.analyses.get(session_id)
        return copy.deepcopy(analysis) if analysis else None

    async def list_analyses(self, user_id=None, metric=None) -> list[SessionAnalysis]:
        return [copy.deepcopy(a) for a in self.analyses.values() if _matches(a, user_id, metric)]

    async def delete_analysis(self, session_id: str) -> bool:
        return self.analyses.pop(session_id, None) is not None

    async def put_summary(self, kind, key, doc) -> None:
        self.summaries.setdefault(kind, {})[summary_key(key)] = copy.deepcopy(doc)

    async def get_summary(self, kind, key) -> dict[str, Any] | None:
        doc = self.summaries.get(kind, {}).get(summary_key(key))
        return copy.deepcopy(doc) if doc is not None else None

    async def list_summaries(self, kind: str) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self.summaries.get(kind, {}))

    async def delete_summary(self, kind, key) -> bool:
        return self.summaries.get(kind, {}).pop(summary_key(key), None) is not None


# ---------------------------------------------------------------------------
# JSON files on disk
# ---------------------------------------------------------------------------


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True)
    os.replace(tmp, path)


def _read_jsonl(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    records = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(json.loads(line))
    return records


def _write_jsonl(path: Path, records: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")
    os.replace(tmp, path)


class JsonStore(Store):
    """Directory of JSON documents plus one JSON-lines file per session's readings.

    A single lock serializes writers within one process. There is no
    cross-process locking.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._locks: dict[asyncio.AbstractEventLoop, asyncio.Lock] = {}

    @property
    def _lock(self) -> asyncio.Lock:
        # asyncio.Lock binds to the loop it first waits on; keep one per loop.
        loop = asyncio.get_running_loop()
        if loop not in self._locks:
            self._locks = {loop: asyncio.Lock()}
        return self._locks[loop]

    @property
    def sessions_path(self) -> Path:
        return self.root / "sessions.json"

    @property
    def analyses_path(self) -> Path:
        return self.root / "analyses.json"

    @property
    def summaries_path(self) -> Path:
        return self.root / "summaries.json"

    def readings_path(self, session_id: str) -> Path:
        return self.root / "readings" / f"{session_id}.jsonl"

    async def _load(self, path: Path) -> dict[str, Any]:
        return await asyncio.to_thread(_read_json, path)

    async def _save(self, path: Path, data: dict[str, Any]) -> None:
        await asyncio.to_thread(_write_json, path, data)

    # -- sessions --------------------------------------------------------

    async def put_session(self, session: SessionRecord) -> None:
        async with self._lock:
            docs = await self._load(self.sessions_path)
            docs[session.session_id] = session.to_dict()
            await self._save(self.sessions_path, docs)

    async def get_session(self, session_id: str) -> SessionRecord | None:
        doc = (await self._load(self.sessions_path)).get(session_id)
        return SessionRecord.from_dict(doc) if doc else None

    async def list_sessions(self, user_id=None, metric=None) -> list[SessionRecord]:
        docs = await self._load(self.sessions_path)
        sessions = [SessionRecord.from_dict(d) for d in docs.values()]
        return [s for s in sessions if _matches(s, user_id, metric)]

    async def delete_session(self, session_id: str) -> bool:
        async with self._lock:
            docs = await self._load(self.sessions_path)
            if docs.pop(session_id, None) is None:
                return False
            await self._save(self.sessions_path, docs)
            return True

    # -- readings --------------------------------------------------------

    async def replace_readings(self, session_id, device_type, readings) -> None:
        path = self.readings_path(session_id)
        async with self._lock:
            records = await asyncio.to_thread(_read_jsonl, path)
            kept = [r for r in records if r["meta"].get("deviceType") != device_type]
            kept.extend(r.to_dict() for r in readings)
            await asyncio.to_thread(_write_jsonl, path, kept)
        logger.debug("Stored %d %s readings for session %s", len(readings), device_type, session_id)

    async def get_readings(self, session_id, device_type=None) -> list[NormalizedReading]:
        session = await self.get_session(session_id)
        metric = session.metric if session else None
        records = await asyncio.to_thread(_read_jsonl, self.readings_path(session_id))
        if device_type is not None:
            records = [r for r in records if r["meta"].get("deviceType") == device_type]
        return [NormalizedReading.from_dict(r, metric) for r in records]

    async def delete_readings(self, session_id: str) -> int:
        path = self.readings_path(session_id)
        async with self._lock:
            records = await asyncio.to_thread(_read_jsonl, path)
            if path.exists():
                await asyncio.to_thread(path.unlink)
        return len(records)

    # -- analyses --------------------------------------------------------

    async def put_analysis(self, analysis: SessionAnalysis) -> None:
        async with self._lock:
            docs = await self._load(self.analyses_path)
            docs[analysis.session_id] = analysis.to_dict()
            await self._save(self.analyses_path, docs)

    async def get_analysis(self, session_id: str) -> SessionAnalysis | None:
        doc = (await self._load(self.analyses_path)).get(session_id)
        return SessionAnalysis.from_dict(doc) if doc else None

    async def list_analyses(self, user_id=None, metric=None) -> list[SessionAnalysis]:
        docs = await self._load(self.analyses_path)
        analyses = [SessionAnalysis.from_dict(d) for d in docs.values()]
        return [a for a in analyses if _matches(a, user_id, metric)]

    async def delete_analysis(self, session_id: str) -> bool:
        async with self._lock:
            docs = await self._load(self.analyses_path)
            if docs.pop(session_id, None) is None:
                return False
            await self._save(self.analyses_path, docs)
            return True

    # -- summaries -------------------------------------------------------

    async def put_summary(self, kind, key, doc) -> None:
        async with self._lock:
            docs = await self._load(self.summaries_path)
            docs.setdefault(kind, {})[summary_key(key)] = doc
            await self._save(self.summaries_path, docs)

    async def get_summary(self, kind, key) -> dict[str, Any] | None:
        docs = await self._load(self.summaries_path)
        return docs.get(kind, {}).get(summary_key(key))

    async def list_summaries(self, kind: str) -> dict[str, dict[str, Any]]:
        return (await self._load(self.summaries_path)).get(kind, {})

    async def delete_summary(self, kind, key) -> bool:
        async with self._lock:
            docs = await self._load(self.summaries_path)
            if docs.get(kind, {}).pop(summary_key(key), None) is None:
                return False
            await self._save(self.summaries_path, docs)
            return True
