"""anchorline cost: anchoring cost comparison."""

from pathlib import Path

import click

from anchorline.cli.main import cli
from anchorline.errors import AnchorlineError


@cli.group()
def cost() -> None:
    """Anchoring cost commands."""


@cost.command()
@click.argument("event_count", type=int)
@click.option("--fee-rate", default=1, type=int, help="Fee per gas unit")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False))
def estimate(event_count: int, fee_rate: int, config_path: str | None) -> None:
    """Compare per-event, batch-root and large-payload anchoring for EVENT_COUNT events."""
    from anchorline.commitment.cost import CostEstimator
    from anchorline.config import load_config

    settings = load_config(Path(config_path)).cost if config_path else None
    try:
        result = CostEstimator(settings).estimate(event_count, fee_rate)
    except AnchorlineError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Events:            {result.event_count}")
    click.echo(f"Per-event anchors: {result.per_event_cost:>14,}")
    click.echo(
        f"Batch root:        {result.batch_cost:>14,}  ({result.batch_savings_percent:.2f}% saved)"
    )
    click.echo(
        f"Large payload:     {result.commitment_cost:>14,}  "
        f"({result.commitment_savings_percent:.2f}% saved, {result.blob_count} blob(s))"
    )
    click.echo(f"Cheapest:          {result.recommended}")
