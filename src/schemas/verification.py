"""Pydantic schemas for verification tasks and results."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from pydantic import BaseModel


class VerificationError(BaseModel):
    type: str
    message: str
    field: str | None = None
    expected: Any = None
    actual: Any = None


class InteractionOutcome(BaseModel):
    interaction_id: str
    success: bool
    actual_response: dict[str, Any] | None = None
    error: VerificationError | None = None


class ResultCreate(BaseModel):
    outcomes: list[InteractionOutcome]
    provider_version: str | None = None
    provider_git_sha: str | None = None


class TaskResponse(BaseModel):
    id: str
    contract_id: str | None = None
    provider: str
    provider_version: str
    consumer: str
    consumer_version: str
    interactions: list[dict[str, Any]]
    created_at: datetime
    closed_at: datetime | None = None

    model_config = {"from_attributes": True}


class ResultSummary(BaseModel):
    passed: int
    failed: int
    total: int


class ResultResponse(BaseModel):
    id: str
    task_id: str
    provider: str
    provider_version: str
    provider_git_sha: str | None = None
    consumer: str
    consumer_version: str
    spec_type: str
    outcomes: list[dict[str, Any]]
    summary: ResultSummary
    succeeded: bool
    submitted_at: datetime

    model_config = {"from_attributes": True}


class MatrixEntry(BaseModel):
    consumer: str
    consumer_version: str
    provider: str
    provider_version: str
    status: str
    results: int
    last_verified_at: datetime


class TrendPoint(BaseModel):
    submitted_at: datetime
    pass_rate: float


class VerificationStats(BaseModel):
    provider: str
    total_verifications: int
    average_pass_rate: float
    total_interactions_tested: int
    unique_consumers: int
    recent_trends: list[TrendPoint]


class TaskRequest(BaseModel):
    consumer: str
    consumer_version: str
    provider: str
    provider_version: str
