"""Click CLI group for anchorline."""

import click


@click.group()
@click.version_option(package_name="anchorline")
def cli() -> None:
    """anchorline: batch anchoring, change approvals and a signed audit trail."""
