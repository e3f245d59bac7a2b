"""anchorline serve: start the MCP server after integrity checks."""

import os
import sys

import click

from anchorline.cli.main import cli


@cli.command()
@click.option("--transport", default="stdio", type=click.Choice(["stdio", "sse"]))
@click.option("--port", default=8080, type=int, help="Port for SSE transport")
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False))
@click.option("--skip-checks", is_flag=True, default=False, help="Start even if the audit chain is broken")
def serve(transport: str, port: int, config_path: str | None, skip_checks: bool) -> None:
    """Start the anchorline MCP server."""
    from pathlib import Path

    from anchorline.context import AnchorlineContext
    from anchorline.logging_config import configure_logging

    # stdout carries the stdio transport; everything human-readable goes to stderr
    click.echo(file=sys.stderr)
    click.echo("anchorline v0.1.0", err=True)
    click.echo("=================", err=True)

    try:
        ctx = AnchorlineContext.from_home(Path(config_path) if config_path else None)
    except FileNotFoundError:
        click.echo("  ✗ Operator key not found. Run 'anchorline init' first.", err=True)
        sys.exit(1)

    configure_logging(ctx.config.log_level, ctx.config.log_json)

    if not _run_checks(ctx) and not skip_checks:
        click.echo("  FATAL: audit chain failed verification. Refusing to start.", err=True)
        sys.exit(1)

    click.echo(f"Operator: {ctx.config.operator_id}", err=True)
    click.echo(
        f"Batching: {ctx.config.batch.max_batch_size} events / "
        f"{ctx.config.batch.max_batch_age_seconds:g}s",
        err=True,
    )
    click.echo(f"MCP server ready on {transport}", err=True)

    from anchorline.server import create_server

    mcp_server = create_server(ctx)
    if transport == "sse":
        mcp_server.settings.port = port
        mcp_server.run(transport="sse")
    else:
        mcp_server.run(transport="stdio")


def _run_checks(ctx) -> bool:
    click.echo("Startup checks:", err=True)
    click.echo(f"  ✓ Operator key loaded ({ctx.audit.public_key.public_bytes_raw().hex()[:16]})", err=True)

    report = ctx.audit.verify_integrity()
    if report.valid:
        click.echo(f"  ✓ Audit chain intact ({report.entries_checked} entries)", err=True)
    else:
        click.echo(f"  ✗ Audit chain broken at entry {report.broken_at}: {report.first_error}", err=True)

    sites = sum(1 for _ in ctx.store.items("site:"))
    anchors = sum(1 for _ in ctx.store.items("anchor:"))
    click.echo(f"  ✓ Registry loaded ({sites} sites, {anchors} anchors)", err=True)
    click.echo(f"  ✓ Running as separate process (PID {os.getpid()})", err=True)
    return report.valid
