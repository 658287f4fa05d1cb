"""Verification endpoints — tasks for provider test runs and their results."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from broker import coordinator
from src.database import get_db
from src.schemas.verification import (
    MatrixEntry,
    ResultCreate,
    ResultResponse,
    TaskRequest,
    TaskResponse,
    VerificationStats,
)

router = APIRouter(prefix="/verification", tags=["verification"])


@router.get("/tasks", response_model=list[TaskResponse])
async def list_pending_tasks(
    provider: str | None = None,
    consumer: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    return await coordinator.list_pending_tasks(db, provider=provider, consumer=consumer)


@router.post("/tasks", response_model=TaskResponse, status_code=201)
async def request_verification(body: TaskRequest, db: AsyncSession = Depends(get_db)):
    """Open a task for an explicit tuple, e.g. to re-verify after a failure."""
    return await coordinator.request_verification(
        db, body.consumer, body.consumer_version, body.provider, body.provider_version
    )


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, db: AsyncSession = Depends(get_db)):
    return await coordinator.get_task(db, task_id)


@router.post("/tasks/{task_id}/results", response_model=ResultResponse, status_code=201)
async def submit_results(task_id: str, body: ResultCreate, db: AsyncSession = Depends(get_db)):
    """Submit a verification run. A task accepts one result; later submissions get 404."""
    return await coordinator.submit_verification_result(
        db,
        task_id,
        [o.model_dump() for o in body.outcomes],
        provider_version=body.provider_version,
        provider_git_sha=body.provider_git_sha,
    )


@router.get("/matrix", response_model=list[MatrixEntry])
async def compatibility_matrix(
    provider: str | None = None,
    consumer: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    return await coordinator.compatibility_matrix(db, provider=provider, consumer=consumer)


@router.get("/{provider}/history", response_model=list[ResultResponse])
async def verification_history(
    provider: str,
    limit: int = Query(default=50, le=200),
    db: AsyncSession = Depends(get_db),
):
    return await coordinator.verification_history(db, provider, limit=limit)


@router.get("/{provider}/stats", response_model=VerificationStats)
async def verification_stats(
    provider: str,
    days: int = Query(default=30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    return await coordinator.verification_stats(db, provider, days=days)
