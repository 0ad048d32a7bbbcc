"""CLI commands for tracebench.

Provides command-line interface using Typer:
- tracebench run: Execute a load run
- tracebench traceparent: Derive a traceparent from a correlation id

Usage:
    tracebench --help
    tracebench run --target http://localhost:8080/transaction --vus 10 --duration 1m
    tracebench traceparent 0af76519-16cd-43dd-8448-eb211c80319c
"""

import typer

from tracebench.cli.run_cmd import app as run_app
from tracebench.cli.traceparent_cmd import app as traceparent_app

# Main CLI application
app = typer.Typer(
    name="tracebench",
    help="tracebench: correlated HTTP load generation with latency telemetry",
    no_args_is_help=True,
)

app.add_typer(run_app, name="run")
app.add_typer(traceparent_app, name="traceparent")


@app.callback()
def callback() -> None:
    """tracebench: correlated HTTP load generation with latency telemetry."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
