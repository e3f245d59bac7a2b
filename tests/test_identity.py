"""Tests for operator keys and the identity signer."""

import hashlib
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from anchorline.errors import IntegrityError
from anchorline.identity.keys import (
    PRIVATE_KEY_NAME,
    PUBLIC_KEY_NAME,
    RETIRED_DIR_NAME,
    generate_and_store_keypair,
    key_fingerprint,
    keypair_exists,
    load_operator_key,
    load_private_key,
    load_public_key,
    retire_keypair,
    write_private_key,
    write_public_key,
)
from anchorline.identity.signer import Ed25519IdentitySigner


def raw(key) -> bytes:
    return key.public_bytes_raw()


class TestOperatorKeys:
    def test_store_and_reload(self, tmp_path: Path):
        keys_dir = tmp_path / "keys"
        private_key, public_key = generate_and_store_keypair(keys_dir)

        assert keypair_exists(keys_dir)
        assert raw(load_private_key(keys_dir / PRIVATE_KEY_NAME).public_key()) == raw(public_key)
        assert raw(load_public_key(keys_dir / PUBLIC_KEY_NAME)) == raw(private_key.public_key())

    def test_private_key_is_owner_read_only(self, tmp_path: Path):
        generate_and_store_keypair(tmp_path)
        assert (tmp_path / PRIVATE_KEY_NAME).stat().st_mode & 0o777 == 0o400

    def test_rewrite_over_read_only_key(self, tmp_path: Path):
        path = tmp_path / PRIVATE_KEY_NAME
        write_private_key(Ed25519PrivateKey.generate(), path)
        replacement = Ed25519PrivateKey.generate()
        write_private_key(replacement, path)
        assert raw(load_private_key(path).public_key()) == raw(replacement.public_key())

    def test_password_protected_key(self, tmp_path: Path):
        path = tmp_path / PRIVATE_KEY_NAME
        key = Ed25519PrivateKey.generate()
        write_private_key(key, path, password=b"s3cret")
        assert raw(load_private_key(path, password=b"s3cret").public_key()) == raw(key.public_key())

    def test_missing_keys(self, tmp_path: Path):
        assert not keypair_exists(tmp_path)
        with pytest.raises(FileNotFoundError):
            load_private_key(tmp_path / PRIVATE_KEY_NAME)

    def test_fingerprint(self):
        k1, k2 = Ed25519PrivateKey.generate(), Ed25519PrivateKey.generate()
        fp = key_fingerprint(k1.public_key())
        assert fp == hashlib.sha256(raw(k1.public_key())).hexdigest()
        assert fp != key_fingerprint(k2.public_key())

    def test_operator_key_matches_public_key(self, tmp_path: Path):
        private_key, _ = generate_and_store_keypair(tmp_path)
        assert raw(load_operator_key(tmp_path).public_key()) == raw(private_key.public_key())

    def test_mismatched_operator_keypair_refused(self, tmp_path: Path):
        generate_and_store_keypair(tmp_path)
        write_public_key(Ed25519PrivateKey.generate().public_key(), tmp_path / PUBLIC_KEY_NAME)
        with pytest.raises(IntegrityError, match="does not match"):
            load_operator_key(tmp_path)


class TestKeyRotation:
    def test_retire_moves_keypair_under_fingerprint(self, tmp_path: Path):
        _, public_key = generate_and_store_keypair(tmp_path)

        retired = retire_keypair(tmp_path)

        assert retired == tmp_path / RETIRED_DIR_NAME / key_fingerprint(public_key)[:16]
        assert not keypair_exists(tmp_path)
        assert keypair_exists(retired)
        assert raw(load_public_key(retired / PUBLIC_KEY_NAME)) == raw(public_key)

    def test_rotation_keeps_both_generations(self, tmp_path: Path):
        _, old = generate_and_store_keypair(tmp_path)
        retired = retire_keypair(tmp_path)
        _, new = generate_and_store_keypair(tmp_path)

        assert raw(load_operator_key(tmp_path).public_key()) == raw(new)
        assert raw(load_operator_key(retired).public_key()) == raw(old)

    def test_retire_without_keypair(self, tmp_path: Path):
        assert retire_keypair(tmp_path) is None


class TestIdentitySigner:
    def test_sign_returns_signature_hash(self):
        key = Ed25519PrivateKey.generate()
        signer = Ed25519IdentitySigner("bob", key)

        sig_hash = signer.sign(b"approve intent 42")

        # Ed25519 signatures are deterministic, so the hash is reproducible.
        assert sig_hash == hashlib.sha256(key.sign(b"approve intent 42")).hexdigest()
        assert len(sig_hash) == 64

    def test_approval_signatures_differ_per_signer_and_intent(self):
        bob = Ed25519IdentitySigner("bob", Ed25519PrivateKey.generate())
        carol = Ed25519IdentitySigner("carol", Ed25519PrivateKey.generate())
        assert bob.sign_approval("i1") != carol.sign_approval("i1")
        assert bob.sign_approval("i1") != bob.sign_approval("i2")
        assert bob.sign_approval("i1") == bob.sign_approval("i1")
