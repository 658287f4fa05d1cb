"""Deployment ledger endpoints and the can-i-deploy gate."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from broker import gate, ledger
from src.database import get_db
from src.schemas.deployments import DeployDecision, DeploymentCreate, DeploymentResponse

router = APIRouter(prefix="/deployments", tags=["deployments"])
gate_router = APIRouter(tags=["can-i-deploy"])


@router.post("", response_model=DeploymentResponse, status_code=201)
async def record_deployment(body: DeploymentCreate, db: AsyncSession = Depends(get_db)):
    """Record a deployment. Successful ones replace the active version atomically."""
    return await ledger.record_deployment(
        db,
        body.service,
        body.version,
        body.environment,
        deployed_by=body.deployed_by,
        git_sha=body.git_sha,
        status=body.status,
        failure_reason=body.failure_reason,
    )


@router.get("/active", response_model=list[DeploymentResponse])
async def list_active(environment: str | None = None, db: AsyncSession = Depends(get_db)):
    return await ledger.list_active(db, environment=environment)


@router.get("/environments", response_model=list[str])
async def list_environments(db: AsyncSession = Depends(get_db)):
    return await ledger.list_environments(db)


@router.get("/{service}/history", response_model=list[DeploymentResponse])
async def deployment_history(
    service: str,
    environment: str | None = None,
    limit: int = Query(default=50, le=200),
    db: AsyncSession = Depends(get_db),
):
    return await ledger.get_history(db, service, environment=environment, limit=limit)


@gate_router.get("/can-i-deploy", response_model=DeployDecision)
async def can_i_deploy(
    service: str,
    version: str,
    role: str,
    environment: str,
    semver_compatibility: str = "none",
    db: AsyncSession = Depends(get_db),
):
    """Read-only deployment safety check; always answers, even with no history."""
    decision = await gate.can_deploy(
        db,
        service,
        version,
        role,
        environment,
        semver_compatibility=semver_compatibility,
    )
    return decision.to_dict()
