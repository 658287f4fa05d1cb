"""Pydantic schemas for fixture endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field


class FixtureCreate(BaseModel):
    source: str
    service: str
    service_versions: list[str] = Field(min_length=1)
    operation: str
    data: dict[str, Any]
    created_from: dict[str, Any] = {}
    priority: int | None = None
    notes: str | None = None
    actor: str = "system"


class FixtureFromInteraction(BaseModel):
    interaction_id: str
    service_versions: list[str] | None = None
    actor: str = "system"


class FixtureFromVerification(BaseModel):
    result_id: str
    interaction_id: str
    actor: str = "system"


class FixtureAction(BaseModel):
    actor: str = Field(min_length=1)
    notes: str | None = None


class FixtureUpdate(BaseModel):
    status: str
    actor: str = Field(min_length=1)
    notes: str | None = None


class ApproveAllRequest(BaseModel):
    approved_by: str = Field(min_length=1)
    fixture_ids: list[str] | None = None
    service: str | None = None


class ApproveAllItem(BaseModel):
    fixture_id: str
    ok: bool
    status: str | None = None
    error: str | None = None
    message: str | None = None


class FixtureResponse(BaseModel):
    id: str
    service: str
    operation: str
    service_versions: list[str]
    data: dict[str, Any]
    source: str
    priority: int
    status: str
    created_from: dict[str, Any]
    approved_by: str | None = None
    approved_at: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class FixtureAuditEntry(BaseModel):
    id: int
    fixture_id: str
    old_status: str | None = None
    new_status: str
    actor: str
    changed_at: datetime
    detail: str | None = None

    model_config = {"from_attributes": True}
