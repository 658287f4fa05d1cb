"""Fixture endpoints — proposal, approval workflow and mock selection."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from broker import fixtures
from src.database import get_db
from src.schemas.fixtures import (
    ApproveAllItem,
    ApproveAllRequest,
    FixtureAction,
    FixtureAuditEntry,
    FixtureCreate,
    FixtureFromInteraction,
    FixtureFromVerification,
    FixtureResponse,
    FixtureUpdate,
)

router = APIRouter(prefix="/fixtures", tags=["fixtures"])


@router.post("", response_model=FixtureResponse, status_code=201)
async def propose_fixture(body: FixtureCreate, db: AsyncSession = Depends(get_db)):
    return await fixtures.propose_fixture(
        db,
        source=body.source,
        service=body.service,
        service_versions=body.service_versions,
        operation=body.operation,
        data=body.data,
        created_from=body.created_from,
        priority=body.priority,
        notes=body.notes,
        actor=body.actor,
    )


@router.post("/from-interaction", response_model=FixtureResponse, status_code=201)
async def propose_from_interaction(
    body: FixtureFromInteraction, db: AsyncSession = Depends(get_db)
):
    return await fixtures.propose_from_interaction(
        db, body.interaction_id, service_versions=body.service_versions, actor=body.actor
    )


@router.post("/from-verification", response_model=FixtureResponse, status_code=201)
async def propose_from_verification(
    body: FixtureFromVerification, db: AsyncSession = Depends(get_db)
):
    return await fixtures.propose_from_verification(
        db, body.result_id, body.interaction_id, actor=body.actor
    )


@router.get("", response_model=list[FixtureResponse])
async def list_fixtures(
    service: str | None = None,
    operation: str | None = None,
    service_version: str | None = None,
    status: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    return await fixtures.list_fixtures(
        db,
        service=service,
        operation=operation,
        service_version=service_version,
        status=status,
    )


@router.get("/mock", response_model=list[FixtureResponse])
async def select_for_mock(
    service: str,
    service_version: str,
    operation: str,
    db: AsyncSession = Depends(get_db),
):
    """Approved fixtures for the mock server, best candidate first."""
    return await fixtures.select_for_mock(db, service, service_version, operation)


@router.post("/approve-all", response_model=list[ApproveAllItem])
async def approve_all(body: ApproveAllRequest, db: AsyncSession = Depends(get_db)):
    """Best-effort bulk approval with a per-fixture report."""
    return await fixtures.approve_all(
        db, body.approved_by, fixture_ids=body.fixture_ids, service=body.service
    )


@router.get("/{fixture_id}", response_model=FixtureResponse)
async def get_fixture(fixture_id: str, db: AsyncSession = Depends(get_db)):
    return await fixtures.get_fixture(db, fixture_id)


@router.get("/{fixture_id}/history", response_model=list[FixtureAuditEntry])
async def fixture_history(fixture_id: str, db: AsyncSession = Depends(get_db)):
    return await fixtures.fixture_history(db, fixture_id)


@router.post("/{fixture_id}/approve", response_model=FixtureResponse)
async def approve_fixture(
    fixture_id: str, body: FixtureAction, db: AsyncSession = Depends(get_db)
):
    return await fixtures.approve(db, fixture_id, body.actor, notes=body.notes)


@router.post("/{fixture_id}/reject", response_model=FixtureResponse)
async def reject_fixture(
    fixture_id: str, body: FixtureAction, db: AsyncSession = Depends(get_db)
):
    return await fixtures.reject(db, fixture_id, body.actor, notes=body.notes)


@router.post("/{fixture_id}/revoke", response_model=FixtureResponse)
async def revoke_fixture(
    fixture_id: str, body: FixtureAction, db: AsyncSession = Depends(get_db)
):
    return await fixtures.revoke(db, fixture_id, body.actor, notes=body.notes)


@router.patch("/{fixture_id}", response_model=FixtureResponse)
async def update_fixture(
    fixture_id: str, body: FixtureUpdate, db: AsyncSession = Depends(get_db)
):
    return await fixtures.transition(db, fixture_id, body.status, body.actor, notes=body.notes)
