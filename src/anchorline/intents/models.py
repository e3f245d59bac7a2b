"""Pydantic models for change intents and their approvals."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from anchorline.hashing import hash_canonical


class IntentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DEPLOYED = "DEPLOYED"
    ROLLED_BACK = "ROLLED_BACK"


TERMINAL_STATUSES = frozenset({IntentStatus.REJECTED, IntentStatus.ROLLED_BACK})


class ChangeIntent(BaseModel):
    intent_id: str
    site_id: str
    blueprint_hash: str
    code_hash: str
    change_package_hash: str
    required_approvals: int
    approval_count: int = 0
    status: IntentStatus = IntentStatus.PENDING
    creator: str
    description: str | None = None
    created_at: datetime
    approved_at: datetime | None = None
    deployed_at: datetime | None = None
    deployer: str | None = None
    rolled_back_at: datetime | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None


class Approval(BaseModel):
    intent_id: str
    approver: str
    decision: str = "approve"
    signature_hash: str
    comment: str | None = None
    timestamp: datetime


def derive_intent_id(
    site_id: str, blueprint_hash: str, code_hash: str, created_at: datetime, creator: str
) -> str:
    return hash_canonical(
        {
            "site_id": site_id,
            "blueprint_hash": blueprint_hash,
            "code_hash": code_hash,
            "created_at": created_at.isoformat(),
            "creator": creator,
        }
    )
