"""Pydantic schemas for interaction recording."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from pydantic import BaseModel


class InteractionCreate(BaseModel):
    # Required fields are checked by the aggregator so that missing values
    # come back as domain validation errors.
    provider: str | None = None
    provider_version: str | None = None
    operation: str | None = None
    consumer: str | None = None
    consumer_version: str | None = None
    consumer_git_sha: str | None = None
    environment: str | None = None
    request: dict[str, Any] | None = None
    response: dict[str, Any] | None = None
    timestamp: datetime | None = None
    duration_ms: int | None = None
    recorded_by: str | None = None


class InteractionRecorded(BaseModel):
    contract_id: str


class InteractionResponse(BaseModel):
    id: str
    provider: str
    provider_version: str | None = None
    operation: str
    consumer: str
    consumer_version: str
    environment: str
    request: dict[str, Any]
    response: dict[str, Any]
    timestamp: datetime
    duration_ms: int | None = None
    contract_id: str | None = None

    model_config = {"from_attributes": True}
