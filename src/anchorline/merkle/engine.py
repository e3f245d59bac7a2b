"""Merkle root, inclusion proof and verification over ordered leaf hashes.

Combination rule, used by every caller (batch anchors, payload commitments,
offline verification):

    parent = sha256(0x01 || left || right)

- ``left`` is the node at the even index, ``right`` the odd one (positional,
  never sorted).
- A level with an odd number of nodes pairs its last node with itself.
- A single leaf is therefore combined with itself: root = parent(leaf, leaf).
- An empty leaf list is rejected.

Leaves and nodes are 32-byte digests in lowercase hex.
"""

import hashlib

from anchorline.errors import ValidationError
from anchorline.hashing import normalize_hash

NODE_PREFIX = b"\x01"


def hash_pair(left: str, right: str) -> str:
    """Combine two child digests into their parent digest."""
    hasher = hashlib.sha256()
    hasher.update(NODE_PREFIX)
    hasher.update(bytes.fromhex(left))
    hasher.update(bytes.fromhex(right))
    return hasher.hexdigest()


def _next_level(level: list[str]) -> list[str]:
    parents: list[str] = []
    for i in range(0, len(level), 2):
        left = level[i]
        right = level[i + 1] if i + 1 < len(level) else left
        parents.append(hash_pair(left, right))
    return parents


def _normalize_leaves(leaves: list[str]) -> list[str]:
    if not leaves:
        raise ValidationError(
            "cannot build a Merkle root from zero leaves",
            precondition="leaf count >= 1",
        )
    return [normalize_hash(leaf, f"leaf[{i}]") for i, leaf in enumerate(leaves)]


class MerkleTree:
    """All levels of one build, so many proofs can share a single pass."""

    def __init__(self, leaves: list[str]) -> None:
        level = _normalize_leaves(leaves)
        self.levels: list[list[str]] = [level]
        # A lone leaf still gets one pairing round.
        while len(level) > 1 or len(self.levels) == 1:
            level = _next_level(level)
            self.levels.append(level)

    @property
    def root(self) -> str:
        return self.levels[-1][0]

    @property
    def leaf_count(self) -> int:
        return len(self.levels[0])

    def proof(self, index: int) -> list[str]:
        """Sibling path from leaf ``index`` up to (not including) the root."""
        if not 0 <= index < self.leaf_count:
            raise ValidationError(
                f"leaf index {index} out of range for {self.leaf_count} leaves",
                precondition=f"0 <= index < {self.leaf_count}",
            )
        path: list[str] = []
        idx = index
        for level in self.levels[:-1]:
            sibling = idx + 1 if idx % 2 == 0 else idx - 1
            if sibling >= len(level):
                sibling = idx  # duplicated last node
            path.append(level[sibling])
            idx //= 2
        return path


def build_root(leaves: list[str]) -> str:
    return MerkleTree(leaves).root


def build_proof(leaves: list[str], index: int) -> list[str]:
    return MerkleTree(leaves).proof(index)


def verify_proof(leaf: str, proof: list[str], root: str, index: int) -> bool:
    """Recompute the root from ``leaf`` and its sibling path.

    Returns False on any malformed input rather than raising.
    """
    if index < 0 or not proof or index >= 2 ** len(proof):
        return False
    try:
        current = normalize_hash(leaf)
        expected = normalize_hash(root)
        siblings = [normalize_hash(s) for s in proof]
    except ValidationError:
        return False

    idx = index
    for sibling in siblings:
        if idx % 2 == 0:
            current = hash_pair(current, sibling)
        else:
            current = hash_pair(sibling, current)
        idx //= 2
    return current == expected
