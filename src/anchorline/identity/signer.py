"""Identity collaborator: turns a payload into an opaque signature hash.

The core never verifies these hashes; it stores them on approvals and threads
them through unchanged. Verification belongs to the identity service that
issued them.
"""

import hashlib
from abc import ABC, abstractmethod

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from anchorline.hashing import canonical_bytes


class IdentitySigner(ABC):
    identity: str

    @abstractmethod
    def sign(self, payload: bytes) -> str:
        """Return the hex sha256 of a signature over ``payload``."""


class Ed25519IdentitySigner(IdentitySigner):
    """Signs with a local Ed25519 key; hands back only the signature hash."""

    def __init__(self, identity: str, private_key: Ed25519PrivateKey) -> None:
        self.identity = identity
        self._private_key = private_key

    def sign(self, payload: bytes) -> str:
        signature = self._private_key.sign(payload)
        return hashlib.sha256(signature).hexdigest()

    def sign_approval(self, intent_id: str) -> str:
        """Signature hash over an approval decision for ``intent_id``."""
        return self.sign(
            canonical_bytes({"intent_id": intent_id, "approver": self.identity, "decision": "approve"})
        )
