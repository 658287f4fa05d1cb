"""Interaction recording endpoint used by consumer mock-recording libraries."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from broker import aggregator
from src.database import get_db
from src.schemas.interactions import InteractionCreate, InteractionRecorded

router = APIRouter(prefix="/interactions", tags=["interactions"])


@router.post("", response_model=InteractionRecorded, status_code=201)
async def record_interaction(body: InteractionCreate, db: AsyncSession = Depends(get_db)):
    """Append an interaction; re-sends are stored as new evidence."""
    contract_id = await aggregator.record_interaction(db, body.model_dump())
    return InteractionRecorded(contract_id=contract_id)
