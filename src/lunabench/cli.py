"""CLI for the lunabench device agreement toolkit."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click

from lunabench.config import Settings, get_settings
from lunabench.logs import setup_logging


def _instant(ctx, param, value):
    if value is None:
        return None
    from lunabench.models import parse_instant

    try:
        return parse_instant(value)
    except ValueError:
        raise click.BadParameter(f"not an ISO-8601 date-time: {value!r}")


def _pairs(ctx, param, values) -> dict[str, str]:
    out = {}
    for item in values:
        key, sep, val = item.partition("=")
        if not sep or not key or not val:
            raise click.BadParameter(f"expected DEVICE=VALUE, got {item!r}")
        out[key.strip().lower()] = val.strip()
    return out


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2))


def _store(settings: Settings):
    from lunabench.store import JsonStore

    return JsonStore(settings.data_dir)


@click.group()
@click.option("--data-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Store directory (default: $LUNABENCH_DATA_DIR or ./data).")
@click.option("--tolerance-ms", type=click.IntRange(min=0), default=None,
              help="Timestamp matching tolerance in milliseconds.")
@click.option("--clock-offset", "clock_offset_minutes", type=int, default=None,
              help="Minutes added to Masimo/Polar timestamps.")
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR.")
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Also write JSON log lines to this file.")
@click.pass_context
def main(ctx, data_dir, tolerance_ms, clock_offset_minutes, log_level, log_file) -> None:
    """lunabench: wearable vs reference device agreement analysis."""
    overrides = {
        "data_dir": data_dir,
        "match_tolerance_ms": tolerance_ms,
        "reference_clock_offset_minutes": clock_offset_minutes,
        "log_level": log_level,
        "log_file": log_file,
    }
    settings = get_settings().model_copy(update={k: v for k, v in overrides.items() if v is not None})
    setup_logging(settings.log_level, settings.log_file)
    ctx.obj = settings


@main.command()
@click.argument("device")
@click.argument("metric")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--start", required=True, callback=_instant, help="Window start (ISO-8601, UTC if naive).")
@click.option("--end", required=True, callback=_instant, help="Window end (ISO-8601, UTC if naive).")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Write readings as JSON lines to this file.")
@click.pass_obj
def parse(settings: Settings, device: str, metric: str, file: Path, start, end, output: Path | None) -> None:
    """Parse one device export and print its row statistics."""
    from lunabench.errors import LunabenchError
    from lunabench.models import ReadingMeta
    from lunabench.parsers import parse_file

    meta = ReadingMeta(session_id="-", user_id="-")
    try:
        result = parse_file(device, metric, file, meta, start, end, settings.clock_offset)
    except LunabenchError as exc:
        raise click.ClickException(str(exc))

    if output:
        with open(output, "w", encoding="utf-8") as f:
            for reading in result.readings:
                f.write(json.dumps(reading.to_dict()) + "\n")
        click.echo(f"{len(result)} readings -> {output}")
    _echo_json(result.stats.to_dict())


@main.command()
@click.argument("luna_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("reference_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--device", "-d", required=True, help="Reference device type (polar, masimo).")
@click.option("--metric", "-m", default="HR", show_default=True, help="HR or SPO2.")
@click.option("--start", required=True, callback=_instant, help="Window start (ISO-8601).")
@click.option("--end", required=True, callback=_instant, help="Window end (ISO-8601).")
@click.option("--details", is_flag=True, help="Include the Bland-Altman series.")
@click.pass_obj
def compare(settings: Settings, luna_file: Path, reference_file: Path, device: str, metric: str,
            start, end, details: bool) -> None:
    """Compare a Luna export against one reference export, without storing anything."""
    from lunabench.analysis import compare_devices
    from lunabench.errors import LunabenchError
    from lunabench.models import TEST_DEVICE, MetricType, ReadingMeta
    from lunabench.parsers import parse_file

    try:
        metric_type = MetricType.parse(metric)
        meta = ReadingMeta(session_id="-", user_id="-")
        luna = parse_file(TEST_DEVICE, metric_type, luna_file, meta, start, end, settings.clock_offset)
        ref = parse_file(device, metric_type, reference_file, meta, start, end, settings.clock_offset)
    except (LunabenchError, ValueError) as exc:
        raise click.ClickException(str(exc))

    result = compare_devices(
        TEST_DEVICE, luna.readings, device.lower(), ref.readings, metric_type, settings.match_tolerance_ms
    )
    data = result.to_dict()
    if not details:
        data.pop("blandAltman", None)
    _echo_json(data)


@main.command()
@click.option("--session-id", required=True)
@click.option("--user-id", required=True)
@click.option("--activity", "activity_type", required=True, help="Activity type, e.g. running.")
@click.option("--metric", "-m", default="HR", show_default=True)
@click.option("--start", required=True, callback=_instant, help="Session start (ISO-8601).")
@click.option("--end", required=True, callback=_instant, help="Session end (ISO-8601).")
@click.option("--file", "files", multiple=True, required=True, callback=_pairs,
              help="DEVICE=PATH, repeatable.")
@click.option("--firmware", multiple=True, callback=_pairs, help="DEVICE=VERSION, repeatable.")
@click.option("--benchmark", default=None, help="Reference device for accuracy rollups.")
@click.option("--band-position", default=None)
@click.pass_obj
def ingest(settings: Settings, session_id, user_id, activity_type, metric, start, end, files,
           firmware, benchmark, band_position) -> None:
    """Ingest a multi-device session into the store and analyze it."""
    from lunabench.ingest import DeviceFile, ingest_session
    from lunabench.models import DeviceSnapshot, MetricType, SessionRecord

    try:
        metric_type = MetricType.parse(metric)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--metric")
    if end < start:
        raise click.BadParameter("end is before start", param_hint="--end")

    session = SessionRecord(
        session_id=session_id,
        user_id=user_id,
        activity_type=activity_type,
        metric=metric_type,
        start_time=start,
        end_time=end,
        devices=[DeviceSnapshot(d, firmware.get(d)) for d in files],
        benchmark_device_type=benchmark.lower() if benchmark else None,
        band_position=band_position,
    )
    device_files = [DeviceFile(d, Path(p)) for d, p in files.items()]

    report = asyncio.run(ingest_session(_store(settings), session, device_files, settings))
    _echo_json(report.to_dict())
    if report.failed_devices or report.errors:
        raise SystemExit(1)


@main.command()
@click.argument("session_id")
@click.pass_obj
def reanalyze(settings: Settings, session_id: str) -> None:
    """Re-run analysis and rollups for a stored session."""
    from lunabench.errors import SessionNotFoundError
    from lunabench.ingest import reanalyze_session

    try:
        report = asyncio.run(reanalyze_session(_store(settings), session_id, settings))
    except SessionNotFoundError as exc:
        raise click.ClickException(str(exc))
    _echo_json(report.to_dict())
    if report.errors:
        raise SystemExit(1)


@main.command()
@click.option("--fix", is_flag=True, help="Analyze every pending session.")
@click.pass_obj
def pending(settings: Settings, fix: bool) -> None:
    """List sessions that have no analysis yet."""
    from lunabench.ingest import reanalyze_session, sessions_missing_analysis

    async def _run() -> None:
        store = _store(settings)
        sessions = await sessions_missing_analysis(store)
        if not sessions:
            click.echo("No pending sessions.")
            return
        for session in sessions:
            click.echo(f"{session.session_id}  {session.user_id}  {session.metric.value}  "
                       f"{session.start_time.isoformat()}")
            if fix:
                report = await reanalyze_session(store, session.session_id, settings)
                status = "ok" if not report.errors else "; ".join(report.errors)
                click.echo(f"  reanalyzed: {status}")

    asyncio.run(_run())


@main.command()
@click.argument("session_id")
@click.pass_obj
def delete(settings: Settings, session_id: str) -> None:
    """Delete a session and recompute the rollups it fed into."""
    from lunabench.errors import SessionNotFoundError
    from lunabench.ingest import delete_session

    try:
        report = asyncio.run(delete_session(_store(settings), session_id))
    except SessionNotFoundError as exc:
        raise click.ClickException(str(exc))
    _echo_json(report.to_dict())


@main.command()
@click.argument("kind", required=False)
@click.argument("key", required=False)
@click.pass_obj
def summary(settings: Settings, kind: str | None, key: str | None) -> None:
    """Show stored rollup summaries.

    Without arguments, lists the keys of every summary kind. KEY uses "|"
    between its parts, e.g. "user-1|HR".
    """
    from lunabench.rollups import SUMMARY_KINDS

    async def _run():
        store = _store(settings)
        if kind is None:
            return {k: sorted(await store.list_summaries(k)) for k in SUMMARY_KINDS}
        if kind not in SUMMARY_KINDS:
            raise click.BadParameter(f"choose from {', '.join(SUMMARY_KINDS)}", param_hint="KIND")
        if key is None:
            return await store.list_summaries(kind)
        doc = await store.get_summary(kind, key)
        if doc is None:
            raise click.ClickException(f"No {kind} summary for {key!r}")
        return doc

    _echo_json(asyncio.run(_run()))


if __name__ == "__main__":
    main()
