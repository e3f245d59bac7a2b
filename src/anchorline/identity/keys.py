"""Operator identity: Ed25519 keypair generation, storage and loading."""

import hashlib
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
    load_pem_public_key,
)

from anchorline.config import KEYS_DIR
from anchorline.errors import IntegrityError

PRIVATE_KEY_NAME = "operator.pem"
PUBLIC_KEY_NAME = "operator.pub.pem"
RETIRED_DIR_NAME = "retired"


def write_private_key(
    private_key: Ed25519PrivateKey,
    path: Path,
    password: bytes | None = None,
) -> Path:
    """Write private key to PEM file with owner-read-only permissions (0o400)."""
    path.parent.mkdir(parents=True, exist_ok=True)

    encryption = BestAvailableEncryption(password) if password else NoEncryption()
    pem_bytes = private_key.private_bytes(
        encoding=Encoding.PEM,
        format=PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )
    if path.exists():
        path.chmod(0o600)
    path.write_bytes(pem_bytes)
    path.chmod(0o400)
    return path


def write_public_key(public_key: Ed25519PublicKey, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    pem_bytes = public_key.public_bytes(
        encoding=Encoding.PEM,
        format=PublicFormat.SubjectPublicKeyInfo,
    )
    path.write_bytes(pem_bytes)
    return path


def load_private_key(path: Path | None = None, password: bytes | None = None) -> Ed25519PrivateKey:
    path = path or (KEYS_DIR / PRIVATE_KEY_NAME)
    if not path.exists():
        raise FileNotFoundError(f"Operator private key not found: {path}")

    key = load_pem_private_key(path.read_bytes(), password=password)
    if not isinstance(key, Ed25519PrivateKey):
        raise TypeError(f"Expected Ed25519 private key, got {type(key).__name__}")
    return key


def load_public_key(path: Path | None = None) -> Ed25519PublicKey:
    path = path or (KEYS_DIR / PUBLIC_KEY_NAME)
    if not path.exists():
        raise FileNotFoundError(f"Operator public key not found: {path}")

    key = load_pem_public_key(path.read_bytes())
    if not isinstance(key, Ed25519PublicKey):
        raise TypeError(f"Expected Ed25519 public key, got {type(key).__name__}")
    return key


def key_fingerprint(public_key: Ed25519PublicKey) -> str:
    """sha256 hex of the raw public key bytes."""
    return hashlib.sha256(public_key.public_bytes_raw()).hexdigest()


def keypair_exists(keys_dir: Path | None = None) -> bool:
    keys_dir = keys_dir or KEYS_DIR
    return (keys_dir / PRIVATE_KEY_NAME).exists() and (keys_dir / PUBLIC_KEY_NAME).exists()


def generate_and_store_keypair(
    keys_dir: Path | None = None,
    password: bytes | None = None,
) -> tuple[Ed25519PrivateKey, Ed25519PublicKey]:
    """Generate a new keypair and write both keys to disk."""
    keys_dir = keys_dir or KEYS_DIR
    private_key = Ed25519PrivateKey.generate()
    public_key = private_key.public_key()

    write_private_key(private_key, keys_dir / PRIVATE_KEY_NAME, password=password)
    write_public_key(public_key, keys_dir / PUBLIC_KEY_NAME)

    return private_key, public_key


def load_operator_key(keys_dir: Path | None = None, password: bytes | None = None) -> Ed25519PrivateKey:
    """Load the audit signing key, refusing one that does not match the stored public key.

    ``anchorline audit verify`` checks the log against the public key file, so
    a mismatched pair would write entries that can never verify.
    """
    keys_dir = keys_dir or KEYS_DIR
    private_key = load_private_key(keys_dir / PRIVATE_KEY_NAME, password=password)
    public_path = keys_dir / PUBLIC_KEY_NAME
    if public_path.exists():
        stored = load_public_key(public_path)
        if stored.public_bytes_raw() != private_key.public_key().public_bytes_raw():
            raise IntegrityError(
                f"operator public key {public_path} does not match the private key",
                precondition="operator keypair matches",
            )
    return private_key


def retire_keypair(keys_dir: Path | None = None) -> Path | None:
    """Move the current keypair to ``retired/<fingerprint>/`` before a rotation.

    Audit entries signed with the old key still verify against the retired
    public key. Returns the retired directory, or None if there was no keypair.
    """
    keys_dir = keys_dir or KEYS_DIR
    if not keypair_exists(keys_dir):
        return None
    fingerprint = key_fingerprint(load_public_key(keys_dir / PUBLIC_KEY_NAME))
    target = keys_dir / RETIRED_DIR_NAME / fingerprint[:16]
    target.mkdir(parents=True, exist_ok=True)
    for name in (PRIVATE_KEY_NAME, PUBLIC_KEY_NAME):
        (keys_dir / name).replace(target / name)
    return target
