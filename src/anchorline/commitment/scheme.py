"""Commitment schemes for large event payloads.

``HashCommitmentScheme`` is a hash-based stand-in with the same shape as a
polynomial commitment: a 32-byte commitment, a versioned hash whose first
byte is the scheme version, and a proof bound to the commitment. Swap in a
real scheme by implementing ``CommitmentScheme``.
"""

import hashlib
from abc import ABC, abstractmethod

from anchorline.commitment.models import Commitment

HASH_SCHEME_VERSION = 0x01


class CommitmentScheme(ABC):
    version: int

    @abstractmethod
    def commit(self, payload: bytes) -> Commitment:
        """Commit to ``payload``."""

    @abstractmethod
    def verify(self, payload: bytes, commitment: Commitment) -> bool:
        """Check that ``commitment`` was produced from ``payload``."""


class HashCommitmentScheme(CommitmentScheme):
    version = HASH_SCHEME_VERSION

    def commit(self, payload: bytes) -> Commitment:
        digest = hashlib.sha256(b"commitment:" + payload).digest()
        versioned = bytes([self.version]) + hashlib.sha256(digest).digest()[1:]
        proof = hashlib.sha256(b"proof:" + digest).hexdigest()
        return Commitment(
            commitment=digest.hex(),
            versioned_hash=versioned.hex(),
            proof=proof,
            version=self.version,
        )

    def verify(self, payload: bytes, commitment: Commitment) -> bool:
        if commitment.version != self.version:
            return False
        return self.commit(payload) == commitment
