"""Shared fixtures: an in-memory registry with one site and its roles."""

import hashlib

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from anchorline.audit.chain import AuditChain
from anchorline.registry.registry import AnchorRegistry
from anchorline.store import MemoryStore

SITE = "plant-7"
OWNER = "alice"
GATEWAY = "gw-01"
SIGNERS = ("bob", "carol")
ADMIN = "root-admin"


def leaf(label: str) -> str:
    return hashlib.sha256(label.encode()).hexdigest()


@pytest.fixture
def signing_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


@pytest.fixture
def audit(signing_key: Ed25519PrivateKey) -> AuditChain:
    return AuditChain(signing_key)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def registry(store: MemoryStore, audit: AuditChain) -> AnchorRegistry:
    return AnchorRegistry(store, audit, admin_identities=[ADMIN])


@pytest.fixture
def site(registry: AnchorRegistry):
    """plant-7 owned by alice, gateway gw-01, extra signers bob and carol."""
    registry.register_site(SITE, OWNER, caller=OWNER)
    registry.authorize_gateway(SITE, GATEWAY, caller=OWNER)
    for signer in SIGNERS:
        registry.authorize_signer(SITE, signer, caller=OWNER)
    return registry.get_site(SITE)
