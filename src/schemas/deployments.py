"""Pydantic schemas for the deployment ledger and can-i-deploy."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, Field


class DeploymentCreate(BaseModel):
    service: str
    version: str
    environment: str = Field(min_length=1)
    deployed_by: str = "unknown"
    git_sha: str | None = None
    status: str = "successful"
    failure_reason: str | None = None


class DeploymentResponse(BaseModel):
    id: str
    service: str
    version: str
    environment: str
    active: bool
    status: str
    deployed_at: datetime
    deployed_by: str
    git_sha: str | None = None
    failure_reason: str | None = None

    model_config = {"from_attributes": True}


class CounterpartCheck(BaseModel):
    service: str
    version: str | None = None
    status: str
    verified_against: str | None = None

    model_config = {"from_attributes": True}


class DeployDecision(BaseModel):
    allowed: bool
    reason: str
    message: str
    service: str
    version: str
    role: str
    environment: str
    providers: list[CounterpartCheck] = []
    consumers: list[CounterpartCheck] = []
    issues: list[str] = []

    model_config = {"from_attributes": True}


class DependencyResponse(BaseModel):
    service: str
    depends_on: list[str]
    dependents: list[str]
    affected: list[str]


class DependencyGraphResponse(BaseModel):
    services: dict[str, list[str]]
    waves: list[list[str]]
