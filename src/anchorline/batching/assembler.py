"""Per-site event buffering and batch anchoring.

Events are buffered per site in arrival order. A flush fires when the buffer
reaches ``max_batch_size`` or when ``max_batch_age_seconds`` have passed since
the first buffered event, whichever comes first. At most one flush is in
flight per site; anything arriving meanwhile queues behind it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from anchorline.audit.chain import AuditChain
from anchorline.audit.models import ActorType
from anchorline.batching.models import AssemblerStats, BatchRecord, Event
from anchorline.config import BatchSettings
from anchorline.errors import (
    AnchorlineError,
    BufferOverflowError,
    ConflictError,
    ExternalError,
    NotFoundError,
    StateError,
    ValidationError,
)
from anchorline.hashing import hash_canonical, normalize_hash
from anchorline.ledger.base import LedgerAdapter, Receipt
from anchorline.merkle.engine import MerkleTree
from anchorline.registry.models import Anchor
from anchorline.registry.registry import derive_anchor_id

if TYPE_CHECKING:
    from anchorline.commitment.service import CommitmentService

logger = logging.getLogger(__name__)


class _PendingFlush:
    """A requested flush. Cancellable until its first ledger submission."""

    def __init__(self) -> None:
        self.cancelled = False
        self.submitted = False
        # Set once the ledger holds the anchor; its events must not be requeued.
        self.acknowledged = False


class _SiteBuffer:
    def __init__(self) -> None:
        self.events: list[Event] = []
        self.in_flight: list[Event] = []
        self.queued = 0
        self.lock = asyncio.Lock()
        self.timer: asyncio.Task | None = None
        self.pending: list[_PendingFlush] = []

    def held(self) -> int:
        return len(self.events) + len(self.in_flight) + self.queued

    def idle(self) -> bool:
        return not (
            self.held() or self.pending or self.timer is not None or self.lock.locked()
        )


class BatchAssembler:
    def __init__(
        self,
        ledger: LedgerAdapter,
        audit: AuditChain,
        settings: BatchSettings,
        submitter: str,
        commitment: CommitmentService | None = None,
        metadata_uri: str = "",
    ) -> None:
        self.ledger = ledger
        self.audit = audit
        self.settings = settings
        self.submitter = submitter
        self.commitment = commitment
        self.metadata_uri = metadata_uri
        self._buffers: dict[str, _SiteBuffer] = {}
        self._batches: dict[str, BatchRecord] = {}
        self._stats = AssemblerStats()
        self._closed = False

    # --- lifecycle ---

    async def start(self) -> None:
        """Re-arm latency timers for sites that already hold events."""
        self._closed = False
        for site_id, buf in self._buffers.items():
            if buf.events and buf.timer is None:
                self._arm_timer(site_id, buf)

    async def shutdown(self) -> None:
        """Stop timers and flush every non-empty buffer."""
        self._closed = True
        for buf in self._buffers.values():
            self._cancel_timer(buf)
        for site_id, buf in list(self._buffers.items()):
            while buf.events:
                remaining = len(buf.events)
                logger.info("shutdown: flushing %d pending events for %s", remaining, site_id)
                try:
                    await self.flush(site_id)
                except AnchorlineError as e:
                    logger.error(
                        "shutdown flush for %s failed, %d events left: %s", site_id, remaining, e
                    )
                    break
                if len(buf.events) >= remaining:
                    break

    # --- intake ---

    async def add_event(self, site_id: str, event: Event) -> Anchor | None:
        """Buffer one event. Returns the anchor if this event triggered a flush.

        Raises BufferOverflowError once buffered plus in-flight events reach
        the overflow cap. A size-triggered flush that fails is recorded and
        logged; its events stay buffered for the next trigger.
        """
        buf = self._buffer(site_id)
        held = buf.held()
        if held >= self.settings.overflow_cap:
            self._stats.overflow_rejections += 1
            logger.error("buffer overflow for %s: rejected event %s", site_id, event.event_hash)
            self.audit.record(
                actor_id=self.submitter,
                actor_type=ActorType.GATEWAY,
                action="batch.overflow",
                resource="site",
                resource_id=site_id,
                details={"event_hash": event.event_hash, "held": held},
            )
            raise BufferOverflowError(
                f"buffer for {site_id} holds {held} events, cap is {self.settings.overflow_cap}",
                precondition=f"held events < {self.settings.overflow_cap}",
            )

        buf.events.append(event)

        if len(buf.events) >= self.settings.max_batch_size:
            try:
                return await self.flush(site_id)
            except AnchorlineError as e:
                logger.warning("size-triggered flush for %s failed: %s", site_id, e)
                return None
        if buf.timer is None:
            self._arm_timer(site_id, buf)
        return None

    async def submit_batch(self, site_id: str, events: list[Event]) -> str:
        """Anchor exactly ``events`` as one batch; returns its anchor id.

        The batch waits behind any flush already in flight for the site but
        never merges with other buffered events. If it fails or is cancelled
        before submission, the events move into the buffer and a later flush
        anchors them, so callers must not resubmit.
        """
        if not events:
            raise ValidationError("submit_batch needs at least one event")
        buf = self._buffer(site_id)
        room = self.settings.overflow_cap - buf.held()
        if len(events) > room:
            raise BufferOverflowError(
                f"batch of {len(events)} does not fit in buffer for {site_id} ({room} free)",
                precondition=f"batch size <= {room}",
            )

        events = list(events)
        queued = len(events)
        buf.queued += queued
        pending = _PendingFlush()
        buf.pending.append(pending)
        try:
            async with buf.lock:
                buf.queued -= queued
                queued = 0
                if pending.cancelled:
                    buf.events.extend(events)
                    raise StateError(
                        f"batch for {site_id} was cancelled before submission",
                        precondition="flush not cancelled",
                    )
                anchor = await self._anchor_in_flight(site_id, buf, events, pending)
        finally:
            buf.queued -= queued
            self._release(site_id, buf, pending)

        await self._commit_best_effort(site_id, events)
        return anchor.anchor_id

    # --- flushing ---

    async def flush(self, site_id: str, limit: int | None = None) -> Anchor | None:
        """Anchor the buffered events for one site.

        Returns None when the buffer is empty or the flush was cancelled
        before submission. On failure the events return to the front of the
        buffer and the error propagates.
        """
        buf = self._buffer(site_id)
        pending = _PendingFlush()
        buf.pending.append(pending)
        try:
            async with buf.lock:
                if pending.cancelled or not buf.events:
                    return None
                self._cancel_timer(buf)

                count = min(len(buf.events), limit or self.settings.max_batch_size)
                events = buf.events[:count]
                del buf.events[:count]
                anchor = await self._anchor_in_flight(site_id, buf, events, pending)
        finally:
            self._release(site_id, buf, pending)

        await self._commit_best_effort(site_id, events)
        return anchor

    def cancel_pending(self, site_id: str) -> bool:
        """Cancel the latency timer and any flush not yet submitted to the ledger.

        Events stay in the buffer. A flush the ledger has already received
        cannot be cancelled.
        """
        buf = self._buffers.get(site_id)
        if buf is None:
            return False
        cancelled = buf.timer is not None
        self._cancel_timer(buf)
        for pending in buf.pending:
            if not pending.submitted and not pending.cancelled:
                pending.cancelled = True
                cancelled = True
        if cancelled:
            logger.info("pending flush for %s cancelled", site_id)
        return cancelled

    async def _anchor_in_flight(
        self, site_id: str, buf: _SiteBuffer, events: list[Event], pending: _PendingFlush
    ) -> Anchor:
        """Anchor ``events`` while they count as in flight.

        Until the ledger acknowledges, any failure (cancellation included)
        puts the events back at the front of the buffer. After that they
        belong to the anchor and are never requeued.
        """
        buf.in_flight = events
        try:
            return await self._anchor(site_id, events, pending)
        except BaseException:
            if not pending.acknowledged:
                buf.events[:0] = events
            raise
        finally:
            buf.in_flight = []

    def _release(self, site_id: str, buf: _SiteBuffer, pending: _PendingFlush) -> None:
        buf.pending.remove(pending)
        if buf.events and buf.timer is None and not pending.cancelled:
            self._arm_timer(site_id, buf)
        if buf.idle() and self._buffers.get(site_id) is buf:
            del self._buffers[site_id]

    async def _anchor(self, site_id: str, events: list[Event], pending: _PendingFlush) -> Anchor:
        leaves = [e.event_hash for e in events]
        tree = MerkleTree(leaves)
        anchored_at = datetime.now(UTC)
        anchor_id = derive_anchor_id(site_id, tree.root, anchored_at, self.submitter)
        args = {
            "site_id": site_id,
            "merkle_root": tree.root,
            "metadata_hash": hash_canonical({"leaves": leaves}),
            "metadata_uri": self.metadata_uri,
            "event_count": len(events),
            "first_event_at": min(e.timestamp for e in events).isoformat(),
            "last_event_at": max(e.timestamp for e in events).isoformat(),
            "timestamp": anchored_at.isoformat(),
        }

        pending.submitted = True
        receipt, attempts = await self._submit_with_retry(anchor_id, args)
        pending.acknowledged = True

        anchor = Anchor(
            anchor_id=anchor_id,
            site_id=site_id,
            merkle_root=tree.root,
            metadata_hash=args["metadata_hash"],
            metadata_uri=self.metadata_uri,
            event_count=len(events),
            first_event_at=min(e.timestamp for e in events),
            last_event_at=max(e.timestamp for e in events),
            anchored_at=anchored_at,
            anchored_by=self.submitter,
        )
        self._batches[anchor_id] = BatchRecord(
            anchor_id=anchor_id,
            site_id=site_id,
            merkle_root=tree.root,
            leaves=leaves,
            finalized_ref=receipt.finalized_ref if receipt else None,
            fee_used=receipt.fee_used if receipt else 0,
            attempts=attempts,
        )
        self._stats.batches_anchored += 1
        self._stats.events_anchored += len(events)
        self._stats.fees_paid += receipt.fee_used if receipt else 0
        self._stats.last_anchor_id = anchor_id
        self._stats.last_merkle_root = tree.root
        logger.info(
            "batch for %s anchored: %d events, root %s, anchor %s",
            site_id,
            len(events),
            tree.root[:12],
            anchor_id[:12],
        )
        return anchor

    async def _submit_with_retry(self, anchor_id: str, args: dict) -> tuple[Receipt | None, int]:
        """Submit anchorBatch with bounded backoff, always under the same id.

        A conflict on a retry means an earlier attempt landed after all; it is
        accepted when the stored anchor carries the same root.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                receipt = await asyncio.wait_for(
                    self.ledger.submit("anchorBatch", args, sender=self.submitter),
                    timeout=self.settings.submit_timeout_seconds,
                )
            except TimeoutError:
                error = ExternalError(
                    f"anchorBatch timed out after {self.settings.submit_timeout_seconds}s",
                    precondition="ledger confirms within submit timeout",
                )
            except ExternalError as e:
                error = e
            except ConflictError:
                if attempt == 1:
                    raise
                stored = await self.ledger.read({"anchor": anchor_id})
                if stored is not None and stored["merkle_root"] == args["merkle_root"]:
                    logger.info("anchor %s landed on an earlier attempt", anchor_id[:12])
                    return None, attempt
                raise
            else:
                if receipt.success:
                    return receipt, attempt
                error = ExternalError(f"ledger reported anchorBatch failure for {anchor_id}")

            if attempt > self.settings.max_retries:
                self._stats.failed_flushes += 1
                logger.error("anchor %s failed after %d attempts: %s", anchor_id[:12], attempt, error)
                self.audit.record(
                    actor_id=self.submitter,
                    actor_type=ActorType.GATEWAY,
                    action="batch.flush_failed",
                    resource="site",
                    resource_id=args["site_id"],
                    details={"anchor_id": anchor_id, "attempts": attempt, "error": str(error)},
                )
                raise error

            delay = self.settings.retry_backoff_seconds * 2 ** (attempt - 1)
            logger.warning(
                "anchor %s attempt %d failed (%s), retrying in %.2fs",
                anchor_id[:12],
                attempt,
                error,
                delay,
            )
            await asyncio.sleep(delay)

    async def _commit_best_effort(self, site_id: str, events: list[Event]) -> None:
        """Secondary large-payload commitment. Never affects the batch anchor."""
        if self.commitment is None or not self.commitment.enabled:
            return
        try:
            await self.commitment.anchor(site_id, events, sender=self.submitter)
        except Exception as e:
            logger.warning("commitment for %s failed, batch anchor kept: %r", site_id, e)

    # --- proofs & stats ---

    def proof_for_event(self, anchor_id: str, event_hash: str) -> tuple[list[str], int]:
        """Inclusion proof and leaf index for an event in a batch anchored here."""
        record = self._batches.get(anchor_id)
        if record is None:
            raise NotFoundError(f"no batch history for anchor {anchor_id}")
        leaf = normalize_hash(event_hash, "event_hash")
        if leaf not in record.leaves:
            raise NotFoundError(f"event {event_hash} is not part of anchor {anchor_id}")
        index = record.leaves.index(leaf)
        return MerkleTree(record.leaves).proof(index), index

    def batch_history(self, site_id: str | None = None) -> list[BatchRecord]:
        records = list(self._batches.values())
        if site_id is not None:
            records = [r for r in records if r.site_id == site_id]
        return records

    def pending_count(self, site_id: str) -> int:
        buf = self._buffers.get(site_id)
        return len(buf.events) if buf else 0

    def stats(self) -> AssemblerStats:
        return self._stats.model_copy(
            update={
                "pending_events": sum(len(b.events) for b in self._buffers.values()),
                "in_flight_events": sum(len(b.in_flight) for b in self._buffers.values()),
            }
        )

    # --- timers ---

    def _buffer(self, site_id: str) -> _SiteBuffer:
        buf = self._buffers.get(site_id)
        if buf is None:
            buf = self._buffers.setdefault(site_id, _SiteBuffer())
        return buf

    def _arm_timer(self, site_id: str, buf: _SiteBuffer) -> None:
        if self._closed:
            return
        buf.timer = asyncio.get_running_loop().create_task(self._flush_after_age(site_id, buf))

    def _cancel_timer(self, buf: _SiteBuffer) -> None:
        timer, buf.timer = buf.timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _flush_after_age(self, site_id: str, buf: _SiteBuffer) -> None:
        await asyncio.sleep(self.settings.max_batch_age_seconds)
        buf.timer = None
        try:
            await self.flush(site_id)
        except AnchorlineError as e:
            logger.warning("latency-triggered flush for %s failed: %s", site_id, e)
