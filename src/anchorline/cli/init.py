"""anchorline init: generate operator keys and write a config file."""

import click
import yaml

from anchorline.cli.main import cli
from anchorline.config import ANCHORLINE_DIR, AUDIT_DIR, KEYS_DIR, STATE_DIR


@cli.command()
@click.option("--non-interactive", is_flag=True, default=False, help="Accept all defaults")
@click.option(
    "--rotate-keys",
    is_flag=True,
    default=False,
    help="Retire the existing operator keypair and generate a new one",
)
def init(non_interactive: bool, rotate_keys: bool) -> None:
    """Set up anchorline: generate the operator keypair and config.yaml."""
    click.echo()
    click.echo("anchorline setup")
    click.echo("================")
    click.echo()

    for d in [ANCHORLINE_DIR, KEYS_DIR, STATE_DIR, AUDIT_DIR]:
        d.mkdir(parents=True, exist_ok=True)

    _setup_operator_keys(non_interactive, rotate_keys)
    _write_config(non_interactive)

    click.echo()
    click.echo("Ready. Start with: anchorline serve")


def _setup_operator_keys(non_interactive: bool, rotate_keys: bool) -> None:
    from anchorline.identity.keys import (
        PRIVATE_KEY_NAME,
        PUBLIC_KEY_NAME,
        generate_and_store_keypair,
        key_fingerprint,
        keypair_exists,
        retire_keypair,
    )

    click.echo("Generating operator keypair...")

    if keypair_exists(KEYS_DIR):
        click.echo(f"  Keypair already exists at {KEYS_DIR}")
        if not rotate_keys and (
            non_interactive
            or not click.confirm(
                "  Rotate the keypair? The current key and audit log move to keys/retired/.",
                default=False,
            )
        ):
            click.echo("  Keeping existing keypair.")
            return
        retired = retire_keypair(KEYS_DIR)
        log_path = AUDIT_DIR / "audit.jsonl"
        if log_path.exists():
            # The chain is signed by one key; the old log retires with it.
            log_path.replace(retired / "audit.jsonl")
        click.echo(f"  Retired previous keypair and audit log to {retired}")

    _, public_key = generate_and_store_keypair(KEYS_DIR)
    click.echo(f"  ✓ Private key: {KEYS_DIR / PRIVATE_KEY_NAME} (owner-read only)")
    click.echo(f"  ✓ Public key:  {KEYS_DIR / PUBLIC_KEY_NAME}")
    click.echo(f"  ✓ Fingerprint: {key_fingerprint(public_key)[:16]}")
    click.echo()


def _write_config(non_interactive: bool) -> None:
    config_path = ANCHORLINE_DIR / "config.yaml"
    if config_path.exists():
        click.echo(f"  Config already exists at {config_path}")
        if non_interactive or not click.confirm("  Overwrite config?", default=False):
            return

    click.echo("Writing config...")
    if non_interactive:
        operator_id, batch_size, batch_age = "operator", 100, 60.0
    else:
        operator_id = click.prompt("  Operator identity", default="operator")
        batch_size = click.prompt("  Max events per batch", default=100, type=int)
        batch_age = click.prompt("  Max batch age (seconds)", default=60.0, type=float)

    config_data = {
        "operator_id": operator_id,
        "admin_identities": [],
        "log_level": "INFO",
        "audit_log": str(AUDIT_DIR / "audit.jsonl"),
        "state_file": str(STATE_DIR / "registry.json"),
        "batch": {"max_batch_size": batch_size, "max_batch_age_seconds": batch_age},
        "commitment": {"enabled": False},
    }
    config_path.write_text(yaml.dump(config_data, sort_keys=False, default_flow_style=False))
    click.echo(f"  ✓ Config written to {config_path}")
