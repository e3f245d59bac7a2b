"""Pydantic models for sites, anchors and registry events."""

from datetime import UTC, datetime

from pydantic import BaseModel, Field


class Site(BaseModel):
    site_id: str
    owner: str
    active: bool = True
    gateways: list[str] = Field(default_factory=list)
    signers: list[str] = Field(default_factory=list)
    registered_at: datetime
    deactivated_at: datetime | None = None


class Anchor(BaseModel):
    anchor_id: str
    site_id: str
    merkle_root: str
    metadata_hash: str
    metadata_uri: str = ""
    event_count: int
    first_event_at: datetime
    last_event_at: datetime
    anchored_at: datetime
    anchored_by: str


class RegistryEvent(BaseModel):
    name: str
    site_id: str
    args: dict = Field(default_factory=dict)
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
