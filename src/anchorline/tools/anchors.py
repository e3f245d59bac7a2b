"""submit_batch, get_anchor, verify_event and get_proof tool implementations."""

from datetime import datetime

from anchorline.batching.assembler import BatchAssembler
from anchorline.batching.models import Event, hash_event_payload
from anchorline.errors import AnchorlineError, ValidationError
from anchorline.registry.registry import AnchorRegistry
from anchorline.tools.result import error_result


def parse_events(raw_events: list[dict]) -> list[Event]:
    """Accept either a precomputed ``event_hash`` or a raw ``payload`` to hash."""
    events = []
    for i, raw in enumerate(raw_events):
        if "event_hash" in raw:
            event_hash = raw["event_hash"]
        elif "payload" in raw:
            event_hash = hash_event_payload(raw["payload"])
        else:
            raise ValidationError(f"event {i} has neither event_hash nor payload")
        fields = {"event_hash": event_hash, "payload_ref": raw.get("payload_ref", "")}
        if raw.get("timestamp"):
            try:
                fields["timestamp"] = datetime.fromisoformat(raw["timestamp"])
            except ValueError as e:
                raise ValidationError(f"event {i} has a malformed timestamp") from e
        events.append(Event(**fields))
    return events


async def handle_submit_batch(
    site_id: str,
    events: list[dict],
    *,
    assembler: BatchAssembler,
    registry: AnchorRegistry,
) -> dict:
    """Anchor a batch of events immediately and return the stored anchor."""
    try:
        anchor_id = await assembler.submit_batch(site_id, parse_events(events))
        anchor = registry.get_anchor(anchor_id)
    except AnchorlineError as e:
        return error_result(e)
    return {"status": "anchored", **anchor.model_dump(mode="json")}


def handle_get_anchor(anchor_id: str, *, registry: AnchorRegistry) -> dict:
    try:
        anchor = registry.get_anchor(anchor_id)
    except AnchorlineError as e:
        return error_result(e)
    return anchor.model_dump(mode="json")


def handle_verify_event(
    anchor_id: str,
    event_hash: str,
    proof: list[str],
    index: int,
    *,
    registry: AnchorRegistry,
) -> dict:
    try:
        valid = registry.verify_event(anchor_id, event_hash, proof, index)
    except AnchorlineError as e:
        return error_result(e)
    return {"anchor_id": anchor_id, "event_hash": event_hash, "index": index, "valid": valid}


def handle_get_proof(anchor_id: str, event_hash: str, *, assembler: BatchAssembler) -> dict:
    """Inclusion proof for an event this process anchored."""
    try:
        proof, index = assembler.proof_for_event(anchor_id, event_hash)
    except AnchorlineError as e:
        return error_result(e)
    return {"anchor_id": anchor_id, "event_hash": event_hash, "index": index, "proof": proof}
