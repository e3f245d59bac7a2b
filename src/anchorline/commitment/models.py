"""Pydantic models for large-payload commitments and cost estimates."""

from datetime import UTC, datetime

from pydantic import BaseModel, Field


class Commitment(BaseModel):
    """Output of a commitment scheme over one payload."""

    commitment: str
    versioned_hash: str
    proof: str
    version: int = 1


class PayloadCommitment(BaseModel):
    payload_id: str
    site_id: str
    merkle_root: str
    event_count: int
    commitment: Commitment
    original_size: int
    compressed_size: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finalized_ref: str | None = None

    @property
    def compression_ratio(self) -> float:
        if self.original_size == 0:
            return 1.0
        return self.compressed_size / self.original_size


class CostEstimate(BaseModel):
    event_count: int
    fee_rate: int
    per_event_cost: int
    batch_cost: int
    commitment_cost: int
    blob_count: int
    batch_savings_percent: float
    commitment_savings_percent: float
    recommended: str
