"""Audit chain verification: hash links and Ed25519 entry signatures."""

import hashlib
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from anchorline.audit.models import AuditEntry, IntegrityReport
from anchorline.hashing import canonical_bytes


def entry_content(entry: AuditEntry) -> bytes:
    """Signed content: everything except signature and entry_hash."""
    return canonical_bytes(entry.model_dump(mode="json", exclude={"signature", "entry_hash"}))


def compute_entry_hash(content: bytes, signature: str) -> str:
    return "sha256:" + hashlib.sha256(content + signature.encode()).hexdigest()


def check_entries(entries: list[AuditEntry], public_key: Ed25519PublicKey) -> IntegrityReport:
    """Walk the chain in order, stopping at the first broken entry.

    Checks, per entry:
    1. prev_hash equals the previous entry's entry_hash (None for the first)
    2. signature verifies over the entry content
    3. entry_hash matches content + signature
    """
    prev_hash: str | None = None

    for i, entry in enumerate(entries):
        if entry.prev_hash != prev_hash:
            return _broken(
                i,
                f"Entry {i} ({entry.entry_id}): prev_hash mismatch. "
                f"Expected {prev_hash}, got {entry.prev_hash}",
            )

        content = entry_content(entry)
        if not entry.signature or not entry.signature.startswith("ed25519:"):
            return _broken(i, f"Entry {i} ({entry.entry_id}): missing signature")
        try:
            public_key.verify(bytes.fromhex(entry.signature.removeprefix("ed25519:")), content)
        except (InvalidSignature, ValueError):
            return _broken(i, f"Entry {i} ({entry.entry_id}): signature mismatch")

        computed_hash = compute_entry_hash(content, entry.signature)
        if entry.entry_hash != computed_hash:
            return _broken(
                i,
                f"Entry {i} ({entry.entry_id}): hash mismatch. "
                f"Expected {computed_hash}, got {entry.entry_hash}",
            )

        prev_hash = entry.entry_hash

    return IntegrityReport(valid=True, entries_checked=len(entries))


def _broken(index: int, error: str) -> IntegrityReport:
    return IntegrityReport(
        valid=False, entries_checked=index + 1, broken_at=index, first_error=error
    )


def read_log(log_path: Path) -> list[AuditEntry]:
    """Parse every entry of a JSONL audit log, in file order."""
    if not log_path.exists():
        return []
    with open(log_path) as f:
        return [AuditEntry.model_validate_json(line) for line in f if line.strip()]


class AuditVerifier:
    """Verify an audit JSONL file offline, given the operator's public key."""

    def __init__(self, public_key: Ed25519PublicKey) -> None:
        self.public_key = public_key

    def verify(self, log_path: Path) -> IntegrityReport:
        if not log_path.exists():
            return IntegrityReport(valid=True, entries_checked=0)

        entries: list[AuditEntry] = []
        with open(log_path) as f:
            for i, line in enumerate(f):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(AuditEntry.model_validate_json(line))
                except ValueError as e:
                    return _broken(len(entries), f"Line {i + 1}: failed to parse entry: {e}")

        return check_entries(entries, self.public_key)
