"""CLI command for deriving trace-context headers.

Usage:
    tracebench traceparent
    tracebench traceparent 0af76519-16cd-43dd-8448-eb211c80319c
"""

from __future__ import annotations

import typer

app = typer.Typer(help="Print the traceparent derived from a correlation id")


@app.callback(invoke_without_command=True)
def traceparent(
    correlation_id: str | None = typer.Argument(
        None, help="Correlation id; a fresh one is generated when omitted"
    ),
) -> None:
    """Print ``<correlation id> <traceparent>``."""
    from tracebench.core.correlation import CorrelationGenerator, make_traceparent

    if correlation_id is None:
        correlation_id, value = CorrelationGenerator().next()
    else:
        try:
            value = make_traceparent(correlation_id)
        except ValueError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=2)

    typer.echo(f"{correlation_id} {value}")
