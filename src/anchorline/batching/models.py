"""Pydantic models for buffered events and anchored batches."""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from anchorline.hashing import hash_canonical, normalize_hash


class Event(BaseModel):
    """One industrial event record, referenced by its hash."""

    model_config = ConfigDict(frozen=True)

    event_hash: str
    payload_ref: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("event_hash")
    @classmethod
    def _normalize(cls, v: str) -> str:
        return normalize_hash(v, "event_hash")

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=UTC)


def hash_event_payload(payload: dict) -> str:
    """Canonical-JSON sha256 of an event payload (keys sorted, compact)."""
    return hash_canonical(payload)


class BatchRecord(BaseModel):
    """What the assembler remembers about a batch it anchored."""

    anchor_id: str
    site_id: str
    merkle_root: str
    leaves: list[str]
    finalized_ref: str | None = None
    fee_used: int = 0
    attempts: int = 1


class AssemblerStats(BaseModel):
    pending_events: int = 0
    in_flight_events: int = 0
    batches_anchored: int = 0
    events_anchored: int = 0
    failed_flushes: int = 0
    overflow_rejections: int = 0
    fees_paid: int = 0
    last_anchor_id: str | None = None
    last_merkle_root: str | None = None
