"""Anchoring cost comparison: per-event vs. batch root vs. large payload."""

import math

from anchorline.commitment.models import CostEstimate
from anchorline.config import CostSettings
from anchorline.errors import ValidationError


class CostEstimator:
    def __init__(self, settings: CostSettings | None = None) -> None:
        self.settings = settings or CostSettings()

    def blob_count(self, event_count: int) -> int:
        payload = event_count * self.settings.avg_event_bytes
        return max(1, math.ceil(payload / self.settings.blob_size_bytes))

    def estimate(self, event_count: int, fee_rate: int = 1) -> CostEstimate:
        if event_count < 1:
            raise ValidationError(
                f"event_count must be positive, got {event_count}", precondition="event_count >= 1"
            )
        if fee_rate < 0:
            raise ValidationError(f"fee_rate must be non-negative, got {fee_rate}")

        s = self.settings
        blobs = self.blob_count(event_count)
        per_event = event_count * s.per_event_gas * fee_rate
        batch = s.batch_gas * fee_rate
        commitment = blobs * s.blob_gas * fee_rate // s.blob_fee_divisor

        options = {"per_event": per_event, "batch": batch, "commitment": commitment}
        return CostEstimate(
            event_count=event_count,
            fee_rate=fee_rate,
            per_event_cost=per_event,
            batch_cost=batch,
            commitment_cost=commitment,
            blob_count=blobs,
            batch_savings_percent=_savings(per_event, batch),
            commitment_savings_percent=_savings(per_event, commitment),
            recommended=min(options, key=options.__getitem__),
        )


def _savings(baseline: int, cost: int) -> float:
    if baseline == 0:
        return 0.0
    return round((baseline - cost) * 100 / baseline, 2)
