"""End-of-run summary and artifact files."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson
from rich.console import Console
from rich.table import Table

from tracebench.runner import RunResult
from tracebench.telemetry.records import utc_now_iso

SLOW_ARTIFACT = "slow-requests.json"
SLOW_LINES_ARTIFACT = "slow-requests-lines.txt"
INGESTION_NOTE = "ingestion-note.txt"


def _fmt(value: float | None, digits: int = 2) -> str:
    return "n/a" if value is None else f"{value:.{digits}f}"


def trace_query(test_type: str) -> str:
    """Log query that finds this run's telemetry."""
    return f"traces | where customDimensions.testType == '{test_type}'"


def build_slow_artifact(result: RunResult) -> dict[str, Any]:
    """Machine-readable slow-request table, slowest first."""
    config = result.config
    return {
        "topN": config.top_n,
        "totalTracked": result.tracked_total,
        "totalOffered": result.offered_total,
        "generatedAt": utc_now_iso(),
        "config": {"maxTrack": config.track_capacity, "slowMs": config.slow_ms},
        "slowestSorted": [entry.to_dict() for entry in result.top()],
    }


def write_artifacts(result: RunResult, output_dir: str | Path) -> list[Path]:
    """Write the run artifacts and return their paths."""
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []

    slow_path = out / SLOW_ARTIFACT
    slow_path.write_bytes(orjson.dumps(build_slow_artifact(result), option=orjson.OPT_INDENT_2))
    written.append(slow_path)

    lines_path = out / SLOW_LINES_ARTIFACT
    lines = [
        f"corr={e.correlation_id} dur_ms={e.duration_ms} status={e.status}"
        for e in result.slowest
    ]
    lines_path.write_text("\n".join(lines), encoding="utf-8")
    written.append(lines_path)

    if result.telemetry_enabled:
        ingestion = result.ingestion
        note_path = out / INGESTION_NOTE
        note_path.write_text(
            f"ItemsSent={ingestion.get('sent', 0)};Failed={ingestion.get('failed', 0)};"
            f"Query={trace_query(result.config.test_type)}",
            encoding="utf-8",
        )
        written.append(note_path)

    return written


def concise_lines(result: RunResult) -> list[str]:
    """The quick-summary block: key latency, error and ingestion numbers."""
    stats = result.stats
    config = result.config
    lines = [
        "===== tracebench QUICK SUMMARY =====",
        f"Requests: total={stats.total_requests} rps={_fmt(stats.request_rate)}",
        f"Latency(ms): med={_fmt(stats.med_duration_ms)} p90={_fmt(stats.p90_duration_ms)} "
        f"p95={_fmt(stats.p95_duration_ms)} max={_fmt(stats.max_duration_ms)}",
        f"Waiting(ms): med={_fmt(stats.med_headers_ms)} p95={_fmt(stats.p95_headers_ms)}",
        f"Errors: http_req_failed_rate={_fmt(stats.error_rate, 4)} "
        f"transport={stats.transport_failures}",
    ]
    if result.telemetry_enabled:
        ing = result.ingestion
        lines.append(
            f"Ingestion: sent={ing.get('sent', 0)} failed={ing.get('failed', 0)} "
            f"flushCalls={ing.get('flush_calls', 0)} avgBatch={_fmt(ing.get('avg_batch_size'))} "
            f"sampling={config.sampling}"
        )
        lines.append(f"Query: {trace_query(config.test_type)}")
    lines.append("=" * 36)
    return lines


def render_summary(result: RunResult, console: Console, pretty: bool = False) -> None:
    """Print the human-readable run summary."""
    if pretty:
        console.print()
        for line in concise_lines(result):
            console.print(line, highlight=False)
        console.print()
        return

    stats = result.stats
    config = result.config

    table = Table(title="tracebench summary", show_header=False)
    table.add_column("metric", style="bold")
    table.add_column("value")
    table.add_row("target", config.target_url)
    table.add_row("vus / duration", f"{config.vus} / {config.duration_s:g}s")
    table.add_row("requests", f"{stats.total_requests} ({_fmt(stats.request_rate)}/s)")
    table.add_row(
        "latency ms",
        f"avg={_fmt(stats.avg_duration_ms)} med={_fmt(stats.med_duration_ms)} "
        f"p90={_fmt(stats.p90_duration_ms)} p95={_fmt(stats.p95_duration_ms)} "
        f"p99={_fmt(stats.p99_duration_ms)} max={_fmt(stats.max_duration_ms)}",
    )
    table.add_row(
        "headers ms",
        f"med={_fmt(stats.med_headers_ms)} p95={_fmt(stats.p95_headers_ms)}",
    )
    table.add_row(
        "errors",
        f"{stats.total_errors} (rate {_fmt(stats.error_rate, 4)}, "
        f"transport {stats.transport_failures}, iteration {stats.iteration_errors})",
    )
    if stats.max_timing_drift_ms is not None:
        table.add_row("max timing drift ms", _fmt(stats.max_timing_drift_ms, 3))

    if result.telemetry_enabled:
        ing = result.ingestion
        table.add_row(
            "ingestion",
            f"sent={ing.get('sent', 0)} failed={ing.get('failed', 0)} "
            f"flushCalls={ing.get('flush_calls', 0)} avgBatch={_fmt(ing.get('avg_batch_size'))} "
            f"sampling={config.sampling}",
        )
    if result.flush_error:
        table.add_row("final flush", f"[red]{result.flush_error}[/red]")

    console.print(table)

    top = result.top()
    if top:
        slow = Table(title="Top slow requests")
        slow.add_column("correlation id")
        slow.add_column("duration ms", justify="right")
        slow.add_column("status", justify="right")
        for entry in top:
            slow.add_row(entry.correlation_id, _fmt(entry.duration_ms, 3), str(entry.status))
        console.print(slow)
