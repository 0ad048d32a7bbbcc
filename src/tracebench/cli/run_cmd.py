"""CLI command for executing a load run.

Usage:
    tracebench run --target https://api.example.com/transaction
    tracebench run -t http://localhost:8080/transaction --vus 20 --duration 2m
    TARGET_URL=... APPINSIGHTS_IKEY=... tracebench run --sampling 0.1 --batch-size 50

Every option falls back to its environment variable (TARGET_URL, VUS,
DURATION, THINK_MS, BATCH_SIZE, ...) when not given on the command line.
"""

from __future__ import annotations

import asyncio

import typer

app = typer.Typer(help="Run a load test against a target endpoint")


@app.callback(invoke_without_command=True)
def run(
    target_url: str | None = typer.Option(
        None, "--target", "-t", help="Endpoint to POST to (env: TARGET_URL)"
    ),
    vus: int | None = typer.Option(None, "--vus", "-u", help="Virtual clients (env: VUS)"),
    duration: str | None = typer.Option(
        None, "--duration", "-d", help="Run length, e.g. 30s, 2m (env: DURATION)"
    ),
    think_ms: int | None = typer.Option(
        None, "--think-ms", help="Sleep per iteration in ms (env: THINK_MS)"
    ),
    append_correlation_path: bool | None = typer.Option(
        None,
        "--append-path/--no-append-path",
        help="POST to <target>/<correlation id> (env: APPEND_CORRELATION_PATH)",
    ),
    instrumentation_key: str | None = typer.Option(
        None, "--ikey", help="Ingestion instrumentation key; enables telemetry (env: APPINSIGHTS_IKEY)"
    ),
    ingestion_url: str | None = typer.Option(
        None, "--ingestion-url", help="Telemetry ingestion endpoint (env: INGESTION_URL)"
    ),
    batch_size: int | None = typer.Option(
        None, "--batch-size", help="Records per ingestion call (env: BATCH_SIZE)"
    ),
    flush_interval_ms: int | None = typer.Option(
        None, "--flush-interval-ms", help="Minimum ms between flushes (env: FLUSH_INTERVAL_MS)"
    ),
    sampling: float | None = typer.Option(
        None, "--sampling", "-s", help="Telemetry sampling rate 0-1 (env: SAMPLING)"
    ),
    max_buffer: int | None = typer.Option(
        None, "--max-buffer", help="Pending records that force a flush (env: MAX_BUFFER)"
    ),
    cloud_role: str | None = typer.Option(
        None, "--cloud-role", help="Cloud role tag on telemetry (env: CLOUD_ROLE)"
    ),
    test_type: str | None = typer.Option(
        None, "--test-type", help="testType property on telemetry (env: TEST_TYPE)"
    ),
    top_n: int | None = typer.Option(
        None, "--top-n", "-n", help="Slow requests to report (env: TOP_N)"
    ),
    max_track: int | None = typer.Option(
        None, "--max-track", help="Slow requests kept in memory (env: MAX_TRACK)"
    ),
    slow_ms: float | None = typer.Option(
        None, "--slow-ms", help="Ignore requests faster than this (env: SLOW_MS)"
    ),
    log_all: bool | None = typer.Option(
        None, "--log-all/--no-log-all", help="Log every request as SLOW_REQ (env: LOG_ALL)"
    ),
    output_dir: str | None = typer.Option(
        None, "--output-dir", "-o", help="Directory for artifacts (env: OUTPUT_DIR)"
    ),
    pretty_summary: bool | None = typer.Option(
        None, "--pretty/--full", help="Concise summary block (env: PRETTY_SUMMARY)"
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="Log level: debug, info, warning, error"
    ),
    log_json: bool | None = typer.Option(
        None, "--log-json/--log-text", help="JSON log lines (env: LOG_JSON)"
    ),
    max_error_rate: float | None = typer.Option(
        None,
        "--max-error-rate",
        help="Exit with code 1 if the request error rate exceeds this fraction",
    ),
) -> None:
    """Run a load test and write the slow-request artifacts."""
    from rich.console import Console

    from tracebench.config import RunConfig
    from tracebench.errors import ConfigurationError
    from tracebench.observability.logging import configure_logging
    from tracebench.report import render_summary, write_artifacts
    from tracebench.runner import RunCoordinator

    console = Console()

    try:
        config = RunConfig.load(
            target_url=target_url,
            vus=vus,
            duration_s=duration,
            think_ms=think_ms,
            append_correlation_path=append_correlation_path,
            instrumentation_key=instrumentation_key,
            ingestion_url=ingestion_url,
            batch_size=batch_size,
            flush_interval_ms=flush_interval_ms,
            sampling=sampling,
            max_buffer=max_buffer,
            cloud_role=cloud_role,
            test_type=test_type,
            top_n=top_n,
            max_track=max_track,
            slow_ms=slow_ms,
            log_all=log_all,
            output_dir=output_dir,
            pretty_summary=pretty_summary,
            log_level=log_level,
            log_json=log_json,
        )
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2)

    configure_logging(json_format=config.log_json, level=config.log_level)

    coordinator = RunCoordinator(config, install_signal_handlers=True)
    result = asyncio.run(coordinator.run())

    render_summary(result, console, pretty=config.pretty_summary)
    for path in write_artifacts(result, config.output_dir):
        console.print(f"[blue]Wrote[/blue] {path}")

    if max_error_rate is not None and result.stats.error_rate > max_error_rate:
        console.print(
            f"[red]Error rate {result.stats.error_rate:.4f} exceeds threshold "
            f"{max_error_rate:.4f}[/red]"
        )
        raise typer.Exit(code=1)
