"""Contract endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from broker import aggregator
from src.database import get_db
from src.schemas.contracts import ContractResponse, ContractUpdate, RebuildSummary
from src.schemas.interactions import InteractionResponse

router = APIRouter(prefix="/contracts", tags=["contracts"])


@router.get("", response_model=list[ContractResponse])
async def list_contracts(
    consumer: str | None = None,
    provider: str | None = None,
    status: str | None = None,
    limit: int = Query(default=100, le=500),
    db: AsyncSession = Depends(get_db),
):
    return await aggregator.list_contracts(
        db, consumer=consumer, provider=provider, status=status, limit=limit
    )


@router.get("/stale", response_model=list[ContractResponse])
async def stale_contracts(
    days: int | None = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_db),
):
    """Active contracts proposed for archival. Nothing is archived automatically."""
    return await aggregator.propose_archival(db, stale_days=days)


@router.post("/rebuild", response_model=RebuildSummary)
async def rebuild_contracts(db: AsyncSession = Depends(get_db)):
    """Recompute every contract rollup from the interaction ledger."""
    return await aggregator.rebuild_contracts(db)


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(contract_id: str, db: AsyncSession = Depends(get_db)):
    return await aggregator.get_contract(db, contract_id)


@router.get("/{contract_id}/interactions", response_model=list[InteractionResponse])
async def list_contract_interactions(
    contract_id: str,
    limit: int = Query(default=50, le=500),
    db: AsyncSession = Depends(get_db),
):
    return await aggregator.list_contract_interactions(db, contract_id, limit=limit)


@router.patch("/{contract_id}", response_model=ContractResponse)
async def update_contract(
    contract_id: str, body: ContractUpdate, db: AsyncSession = Depends(get_db)
):
    """Operator-set status: active, archived or deprecated."""
    return await aggregator.set_contract_status(db, contract_id, body.status)
