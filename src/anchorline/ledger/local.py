"""In-process ledger executing calls against an AnchorRegistry, for tests and demos."""

import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import datetime

from anchorline.config import CostSettings
from anchorline.errors import NotFoundError, ValidationError
from anchorline.hashing import hash_canonical
from anchorline.ledger.base import LedgerAdapter, LedgerEvent, Receipt
from anchorline.registry.models import RegistryEvent
from anchorline.registry.registry import AnchorRegistry

logger = logging.getLogger(__name__)

SITE_ADMIN_GAS = 45_000
COMMITMENT_TX_GAS = 21_000


class LocalLedger(LedgerAdapter):
    """Fully functional local ledger.

    - Executes registry calls in-process; registry errors propagate unchanged
    - Simulates confirmation latency with ``confirmation_delay`` seconds
    - Meters fees from the configured gas schedule times ``fee_rate``
    - Relays registry events to subscribers in emission order
    """

    def __init__(
        self,
        registry: AnchorRegistry,
        cost: CostSettings | None = None,
        fee_rate: int = 1,
        confirmation_delay: float = 0.0,
    ) -> None:
        self.registry = registry
        self.cost = cost or CostSettings()
        self.fee_rate = fee_rate
        self.confirmation_delay = confirmation_delay
        self.commitments: dict[str, dict] = {}
        self._sequence = 0
        self._subscribers: list[asyncio.Queue[LedgerEvent]] = []
        registry.add_listener(self._relay)

    async def submit(self, call: str, args: dict, *, sender: str) -> Receipt:
        handler = getattr(self, f"_call_{call}", None)
        if handler is None:
            raise ValidationError(f"unknown ledger call: {call}")

        if self.confirmation_delay:
            await asyncio.sleep(self.confirmation_delay)

        result, gas = handler(args, sender)
        self._sequence += 1
        ref = f"local:{self._sequence}:" + hash_canonical(
            {"call": call, "args": args, "sender": sender, "sequence": self._sequence}
        )[:16]
        logger.debug("ledger %s by %s finalized as %s", call, sender, ref)
        return Receipt(success=True, fee_used=gas * self.fee_rate, finalized_ref=ref, result=result)

    async def read(self, query: dict) -> dict | None:
        try:
            if "anchor" in query:
                return self.registry.get_anchor(query["anchor"]).model_dump(mode="json")
            if "site" in query:
                return self.registry.get_site(query["site"]).model_dump(mode="json")
        except NotFoundError:
            return None
        if "commitment" in query:
            return self.commitments.get(query["commitment"])
        raise ValidationError(f"unsupported ledger query: {sorted(query)}")

    async def subscribe(self, event_filter: dict | None = None) -> AsyncIterator[LedgerEvent]:
        queue: asyncio.Queue[LedgerEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            while True:
                event = await queue.get()
                if _matches(event, event_filter):
                    yield event
        finally:
            self._subscribers.remove(queue)

    # --- calls ---

    def _call_registerSite(self, args: dict, sender: str) -> tuple[dict, int]:
        site = self.registry.register_site(args["site_id"], args["owner"], caller=sender)
        return site.model_dump(mode="json"), SITE_ADMIN_GAS

    def _call_transferOwnership(self, args: dict, sender: str) -> tuple[dict, int]:
        site = self.registry.transfer_ownership(args["site_id"], args["new_owner"], caller=sender)
        return site.model_dump(mode="json"), SITE_ADMIN_GAS

    def _call_deactivateSite(self, args: dict, sender: str) -> tuple[dict, int]:
        site = self.registry.deactivate_site(args["site_id"], caller=sender)
        return site.model_dump(mode="json"), SITE_ADMIN_GAS

    def _call_authorizeGateway(self, args: dict, sender: str) -> tuple[dict, int]:
        site = self.registry.authorize_gateway(args["site_id"], args["identity"], caller=sender)
        return site.model_dump(mode="json"), SITE_ADMIN_GAS

    def _call_revokeGateway(self, args: dict, sender: str) -> tuple[dict, int]:
        site = self.registry.revoke_gateway(args["site_id"], args["identity"], caller=sender)
        return site.model_dump(mode="json"), SITE_ADMIN_GAS

    def _call_authorizeSigner(self, args: dict, sender: str) -> tuple[dict, int]:
        site = self.registry.authorize_signer(args["site_id"], args["identity"], caller=sender)
        return site.model_dump(mode="json"), SITE_ADMIN_GAS

    def _call_revokeSigner(self, args: dict, sender: str) -> tuple[dict, int]:
        site = self.registry.revoke_signer(args["site_id"], args["identity"], caller=sender)
        return site.model_dump(mode="json"), SITE_ADMIN_GAS

    def _call_anchorBatch(self, args: dict, sender: str) -> tuple[dict, int]:
        anchor = self.registry.anchor_batch(
            args["site_id"],
            args["merkle_root"],
            args["metadata_hash"],
            args.get("metadata_uri", ""),
            args["event_count"],
            datetime.fromisoformat(args["first_event_at"]),
            datetime.fromisoformat(args["last_event_at"]),
            caller=sender,
            timestamp=datetime.fromisoformat(args["timestamp"]) if "timestamp" in args else None,
        )
        return anchor.model_dump(mode="json"), self.cost.batch_gas

    def _call_anchorCommitment(self, args: dict, sender: str) -> tuple[dict, int]:
        self.registry.require_anchoring_rights(args["site_id"], sender)
        record = {**args, "anchored_by": sender}
        self.commitments[args["payload_id"]] = record
        self._relay(
            RegistryEvent(name="CommitmentAnchored", site_id=args["site_id"], args=record)
        )
        blobs = max(1, -(-args.get("compressed_size", 0) // self.cost.blob_size_bytes))
        gas = COMMITMENT_TX_GAS + blobs * self.cost.blob_gas // self.cost.blob_fee_divisor
        return record, gas

    def _relay(self, event: RegistryEvent) -> None:
        ledger_event = LedgerEvent(
            name=event.name,
            site_id=event.site_id,
            args=event.args,
            sequence=self._sequence + 1,
            emitted_at=event.emitted_at,
        )
        for queue in list(self._subscribers):
            queue.put_nowait(ledger_event)


def _matches(event: LedgerEvent, event_filter: dict | None) -> bool:
    if not event_filter:
        return True
    names = event_filter.get("name")
    if names is not None:
        names = {names} if isinstance(names, str) else set(names)
        if event.name not in names:
            return False
    site_id = event_filter.get("site_id")
    return site_id is None or event.site_id == site_id
