"""anchorline audit: audit trail commands."""

import json
from pathlib import Path

import click

from anchorline.cli.main import cli
from anchorline.config import AUDIT_DIR, KEYS_DIR

_log_option = click.option(
    "--log",
    "log_path",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Audit log (default: ~/.anchorline/audit/audit.jsonl)",
)


@cli.group()
def audit() -> None:
    """Audit trail commands."""


@audit.command()
@_log_option
@click.option(
    "--public-key",
    "key_path",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Operator public key PEM (default: ~/.anchorline/keys/operator.pub.pem)",
)
def verify(log_path: Path | None, key_path: Path | None) -> None:
    """Verify audit log hash links and signatures."""
    from anchorline.audit.verifier import AuditVerifier
    from anchorline.identity.keys import PUBLIC_KEY_NAME, load_public_key

    log_path = log_path or AUDIT_DIR / "audit.jsonl"
    if not log_path.exists():
        click.echo(f"No audit log found at {log_path}")
        return

    public_key = load_public_key(key_path or KEYS_DIR / PUBLIC_KEY_NAME)
    result = AuditVerifier(public_key).verify(log_path)

    if result.valid:
        click.echo(f"Audit log verified: {result.entries_checked} entries, chain intact.")
    else:
        click.echo(f"VERIFICATION FAILED at entry {result.broken_at}")
        click.echo(f"Error: {result.first_error}")
        raise SystemExit(1)


@audit.command()
@_log_option
@click.option("--last", "n", default=20, type=int, help="Number of entries to show")
@click.option("--action", default=None, help="Only show this action")
def show(log_path: Path | None, n: int, action: str | None) -> None:
    """Print recent audit entries."""
    from anchorline.audit.verifier import read_log

    log_path = log_path or AUDIT_DIR / "audit.jsonl"
    entries = read_log(log_path)
    if action:
        entries = [e for e in entries if e.action == action]

    if not entries:
        click.echo(f"No audit entries in {log_path}")
        return

    for entry in entries[-n:]:
        target = f"{entry.resource}/{entry.resource_id}" if entry.resource_id else entry.resource
        click.echo(
            f"  {entry.timestamp.isoformat()[:19]}  {entry.action:<24} {entry.actor_id:<16} {target}"
        )


@audit.command()
@_log_option
@click.option("--format", "fmt", default="json", type=click.Choice(["json", "csv"]))
@click.option("--output", "output_path", default=None, help="Output file path")
def export(log_path: Path | None, fmt: str, output_path: str | None) -> None:
    """Export audit log to JSON or CSV."""
    import csv
    import io

    from anchorline.audit.verifier import read_log

    entries = read_log(log_path or AUDIT_DIR / "audit.jsonl")

    if fmt == "json":
        content = json.dumps([e.model_dump(mode="json") for e in entries], indent=2)
    else:
        output = io.StringIO()
        if entries:
            fields = list(entries[0].model_dump().keys())
            writer = csv.DictWriter(output, fieldnames=fields)
            writer.writeheader()
            for entry in entries:
                row = entry.model_dump(mode="json")
                row["details"] = json.dumps(row["details"], sort_keys=True)
                writer.writerow(row)
        content = output.getvalue()

    if output_path:
        with open(output_path, "w") as f:
            f.write(content)
        click.echo(f"Exported {len(entries)} entries to {output_path}")
    else:
        click.echo(content)
