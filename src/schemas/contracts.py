"""Pydantic schemas for contract endpoints."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel


class ContractResponse(BaseModel):
    id: str
    consumer_name: str
    consumer_version: str
    provider_name: str
    provider_version: str | None = None
    spec_type: str
    interaction_count: int
    status: str
    first_seen: datetime
    last_seen: datetime

    model_config = {"from_attributes": True}


class ContractUpdate(BaseModel):
    status: str


class RebuildSummary(BaseModel):
    contracts: int
    corrected: int
