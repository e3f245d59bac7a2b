"""Abstract external-ledger interface and shared data models."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from datetime import datetime

from pydantic import BaseModel, Field


class Receipt(BaseModel):
    success: bool
    fee_used: int = 0
    finalized_ref: str | None = None
    result: dict = Field(default_factory=dict)


class LedgerEvent(BaseModel):
    name: str
    site_id: str
    args: dict = Field(default_factory=dict)
    sequence: int
    emitted_at: datetime


class LedgerAdapter(ABC):
    """submit / read / subscribe, the only ledger surface the core consumes.

    Confirmation latency lives behind ``submit``; callers bound it with a
    timeout and retry using the same deterministic ids.
    """

    @abstractmethod
    async def submit(self, call: str, args: dict, *, sender: str) -> Receipt: ...

    @abstractmethod
    async def read(self, query: dict) -> dict | None: ...

    @abstractmethod
    def subscribe(self, event_filter: dict | None = None) -> AsyncIterator[LedgerEvent]: ...
