"""Pydantic schemas for the service directory endpoints."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, Field


class ServiceCreate(BaseModel):
    name: str = Field(min_length=1)
    role: str
    spec_type: str | None = None
    description: str | None = None
    git_repository_url: str | None = None


class ServiceResponse(BaseModel):
    id: str
    name: str
    roles: list[str]
    spec_type: str
    description: str | None = None
    git_repository_url: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class VersionCreate(BaseModel):
    role: str
    version: str = Field(min_length=1)
    spec: dict | None = None
    git_sha: str | None = None
    package_json: dict | None = None
    created_by: str = "unknown"
    spec_type: str | None = None


class VersionResponse(BaseModel):
    id: str
    service_name: str
    role: str
    version: str
    git_sha: str | None = None
    spec: dict | None = None
    package_json: dict | None = None
    created_at: datetime
    created_by: str

    model_config = {"from_attributes": True}
