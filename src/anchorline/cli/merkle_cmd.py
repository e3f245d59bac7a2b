"""anchorline merkle: offline root, proof and verification helpers."""

import json

import click

from anchorline.cli.main import cli
from anchorline.errors import AnchorlineError


def _read_leaves(leaves_file) -> list[str]:
    return [line.strip() for line in leaves_file if line.strip()]


@cli.group()
def merkle() -> None:
    """Merkle root and proof commands. Leaves are read one hash per line."""


@merkle.command()
@click.argument("leaves_file", type=click.File("r"))
def root(leaves_file) -> None:
    """Print the Merkle root of LEAVES_FILE."""
    from anchorline.merkle.engine import build_root

    try:
        click.echo(build_root(_read_leaves(leaves_file)))
    except AnchorlineError as e:
        raise click.ClickException(str(e)) from e


@merkle.command()
@click.argument("leaves_file", type=click.File("r"))
@click.argument("index", type=int)
def proof(leaves_file, index: int) -> None:
    """Print the inclusion proof for leaf INDEX as JSON."""
    from anchorline.merkle.engine import MerkleTree

    try:
        tree = MerkleTree(_read_leaves(leaves_file))
        path = tree.proof(index)
    except AnchorlineError as e:
        raise click.ClickException(str(e)) from e
    click.echo(json.dumps({"root": tree.root, "index": index, "proof": path}, indent=2))


@merkle.command("verify")
@click.option("--leaf", required=True, help="Leaf hash")
@click.option("--root", "root_hash", required=True, help="Expected Merkle root")
@click.option("--index", required=True, type=int, help="Leaf position")
@click.option("--proof", "proof_json", required=True, help="JSON list of sibling hashes")
def verify_cmd(leaf: str, root_hash: str, index: int, proof_json: str) -> None:
    """Check an inclusion proof. Exits 1 when it does not verify."""
    from anchorline.merkle.engine import verify_proof

    try:
        path = json.loads(proof_json)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"--proof is not valid JSON: {e}") from e

    if verify_proof(leaf, path, root_hash, index):
        click.echo("Proof valid.")
    else:
        click.echo("Proof INVALID.")
        raise SystemExit(1)
