"""Canonical serialization and hash helpers."""

import hashlib
import json

from anchorline.errors import ValidationError

ZERO_HASH = "0" * 64
_HEX = frozenset("0123456789abcdef")


def canonical_bytes(data: object) -> bytes:
    """Canonical JSON serialization for deterministic hashing."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str).encode()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_canonical(data: object) -> str:
    """sha256 hex digest of the canonical JSON form of ``data``."""
    return sha256_hex(canonical_bytes(data))


def normalize_hash(value: object, field: str = "hash") -> str:
    """Return ``value`` as 64 lowercase hex chars, accepting a 0x prefix."""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a hex string, got {type(value).__name__}")
    h = value.strip().lower()
    if h.startswith("0x"):
        h = h[2:]
    if len(h) != 64 or not set(h) <= _HEX:
        raise ValidationError(
            f"{field} must be 32 bytes of hex, got {value!r}",
            precondition=f"{field} is a 64-char hex digest",
        )
    return h


def is_zero_hash(value: str) -> bool:
    return normalize_hash(value) == ZERO_HASH
