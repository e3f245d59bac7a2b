"""Large-payload commitment path, run alongside batch anchoring."""

import asyncio
import logging
import zlib
from collections.abc import Sequence

from anchorline.batching.models import Event
from anchorline.commitment.models import PayloadCommitment
from anchorline.commitment.scheme import CommitmentScheme, HashCommitmentScheme
from anchorline.config import CommitmentSettings
from anchorline.errors import AnchorlineError, ValidationError
from anchorline.hashing import canonical_bytes, sha256_hex
from anchorline.ledger.base import LedgerAdapter
from anchorline.merkle.engine import build_root

logger = logging.getLogger(__name__)


def serialize_events(events: Sequence[Event]) -> bytes:
    return canonical_bytes([e.model_dump(mode="json") for e in events])


class CommitmentService:
    """Commits to a full serialized batch instead of only its root.

    ``anchor`` is best-effort: when disabled, on a ledger error or after
    ``submit_timeout_seconds`` without confirmation it logs and
    returns None, leaving the batch anchor untouched.
    """

    def __init__(
        self,
        ledger: LedgerAdapter | None,
        settings: CommitmentSettings | None = None,
        scheme: CommitmentScheme | None = None,
    ) -> None:
        self.ledger = ledger
        self.settings = settings or CommitmentSettings()
        self.scheme = scheme or HashCommitmentScheme()
        self._history: dict[str, PayloadCommitment] = {}

    @property
    def enabled(self) -> bool:
        return self.settings.enabled and self.ledger is not None

    def prepare(self, site_id: str, events: Sequence[Event]) -> PayloadCommitment:
        if not events:
            raise ValidationError("cannot commit to an empty batch")

        payload = serialize_events(events)
        if len(payload) > self.settings.max_payload_bytes:
            raise ValidationError(
                f"payload is {len(payload)} bytes, limit is {self.settings.max_payload_bytes}",
                precondition=f"payload <= {self.settings.max_payload_bytes} bytes",
            )
        compressed = len(zlib.compress(payload)) if self.settings.compression_enabled else len(payload)

        return PayloadCommitment(
            payload_id=sha256_hex(payload)[:32],
            site_id=site_id,
            merkle_root=build_root([e.event_hash for e in events]),
            event_count=len(events),
            commitment=self.scheme.commit(payload),
            original_size=len(payload),
            compressed_size=compressed,
        )

    def verify(self, events: Sequence[Event], commitment: PayloadCommitment) -> bool:
        if not events or len(events) != commitment.event_count:
            return False
        if build_root([e.event_hash for e in events]) != commitment.merkle_root:
            return False
        return self.scheme.verify(serialize_events(events), commitment.commitment)

    async def anchor(
        self, site_id: str, events: Sequence[Event], *, sender: str
    ) -> PayloadCommitment | None:
        if not self.enabled:
            logger.debug("commitment path disabled, skipping %d events for %s", len(events), site_id)
            return None
        try:
            prepared = self.prepare(site_id, events)
            receipt = await asyncio.wait_for(
                self.ledger.submit(
                    "anchorCommitment",
                    {
                        "payload_id": prepared.payload_id,
                        "site_id": site_id,
                        "merkle_root": prepared.merkle_root,
                        "commitment": prepared.commitment.commitment,
                        "versioned_hash": prepared.commitment.versioned_hash,
                        "event_count": prepared.event_count,
                        "original_size": prepared.original_size,
                        "compressed_size": prepared.compressed_size,
                    },
                    sender=sender,
                ),
                timeout=self.settings.submit_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "commitment for %s skipped: ledger did not confirm within %ss",
                site_id,
                self.settings.submit_timeout_seconds,
            )
            return None
        except AnchorlineError as e:
            logger.warning("commitment for %s skipped: %s", site_id, e)
            return None
        if not receipt.success:
            logger.warning("ledger rejected commitment %s for %s", prepared.payload_id, site_id)
            return None

        prepared.finalized_ref = receipt.finalized_ref
        self._history[prepared.payload_id] = prepared
        logger.info(
            "commitment %s anchored for %s (%d events, %d -> %d bytes)",
            prepared.payload_id,
            site_id,
            prepared.event_count,
            prepared.original_size,
            prepared.compressed_size,
        )
        return prepared

    def get(self, payload_id: str) -> PayloadCommitment | None:
        return self._history.get(payload_id)
