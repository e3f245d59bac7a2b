"""Pydantic models for audit chain entries."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ActorType(str, Enum):
    USER = "USER"
    DEVICE = "DEVICE"
    AGENT = "AGENT"
    GATEWAY = "GATEWAY"
    SYSTEM = "SYSTEM"


class AuditEntry(BaseModel):
    entry_id: str
    timestamp: datetime
    actor_id: str
    actor_type: ActorType
    action: str
    resource: str
    resource_id: str | None = None
    details: dict = Field(default_factory=dict)
    prev_hash: str | None = None
    signature: str | None = None
    entry_hash: str | None = None


class IntegrityReport(BaseModel):
    valid: bool
    entries_checked: int
    broken_at: int | None = None
    first_error: str | None = None
