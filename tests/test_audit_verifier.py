"""Tests for offline verification of an audit JSONL file."""

import json
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from anchorline.audit.chain import AuditChain
from anchorline.audit.models import ActorType
from anchorline.audit.verifier import AuditVerifier, read_log


def write_log(signing_key: Ed25519PrivateKey, path: Path, n: int) -> None:
    chain = AuditChain(signing_key, path)
    for i in range(n):
        chain.record("gw-01", ActorType.GATEWAY, "anchor.create", "anchor", f"a{i}", {"n": i})


def test_valid_chain(signing_key: Ed25519PrivateKey, tmp_path: Path):
    log_path = tmp_path / "audit.jsonl"
    write_log(signing_key, log_path, 5)

    result = AuditVerifier(signing_key.public_key()).verify(log_path)
    assert result.valid
    assert result.entries_checked == 5


def test_missing_file_is_empty_and_valid(signing_key: Ed25519PrivateKey, tmp_path: Path):
    result = AuditVerifier(signing_key.public_key()).verify(tmp_path / "nope.jsonl")
    assert result.valid
    assert result.entries_checked == 0


def test_tampered_line_detected(signing_key: Ed25519PrivateKey, tmp_path: Path):
    log_path = tmp_path / "audit.jsonl"
    write_log(signing_key, log_path, 4)

    lines = log_path.read_text().splitlines()
    entry = json.loads(lines[2])
    entry["details"]["n"] = 999
    lines[2] = json.dumps(entry)
    log_path.write_text("\n".join(lines) + "\n")

    result = AuditVerifier(signing_key.public_key()).verify(log_path)
    assert not result.valid
    assert result.broken_at == 2


def test_deleted_line_detected(signing_key: Ed25519PrivateKey, tmp_path: Path):
    log_path = tmp_path / "audit.jsonl"
    write_log(signing_key, log_path, 4)

    lines = log_path.read_text().splitlines()
    del lines[1]
    log_path.write_text("\n".join(lines) + "\n")

    result = AuditVerifier(signing_key.public_key()).verify(log_path)
    assert not result.valid
    assert result.broken_at == 1
    assert "prev_hash mismatch" in result.first_error


def test_wrong_public_key_fails_first_entry(signing_key: Ed25519PrivateKey, tmp_path: Path):
    log_path = tmp_path / "audit.jsonl"
    write_log(signing_key, log_path, 2)

    other = Ed25519PrivateKey.generate().public_key()
    result = AuditVerifier(other).verify(log_path)
    assert not result.valid
    assert result.broken_at == 0
    assert "signature mismatch" in result.first_error


def test_unparseable_line(signing_key: Ed25519PrivateKey, tmp_path: Path):
    log_path = tmp_path / "audit.jsonl"
    write_log(signing_key, log_path, 2)
    with open(log_path, "a") as f:
        f.write("{not json\n")

    result = AuditVerifier(signing_key.public_key()).verify(log_path)
    assert not result.valid
    assert result.broken_at == 2
    assert "failed to parse" in result.first_error


def test_read_log(signing_key: Ed25519PrivateKey, tmp_path: Path):
    log_path = tmp_path / "audit.jsonl"
    write_log(signing_key, log_path, 3)

    entries = read_log(log_path)
    assert [e.resource_id for e in entries] == ["a0", "a1", "a2"]
    assert read_log(tmp_path / "missing.jsonl") == []
