"""Fixture lifecycle — curated examples moving through draft, approved and rejected.

All status changes go through ``TRANSITIONS``; there is no other place that
decides whether an edge is legal. Writes are guarded by the expected current
status, so a fixture changed concurrently by another operator fails with
ConflictingState instead of being overwritten. Each change leaves a row in
the fixture audit log.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from broker import directory
from src.config import settings
from src.entities.audit_log import FixtureAuditLog
from src.entities.fixture import Fixture, FixtureSource, FixtureStatus
from src.entities.interaction import Interaction
from src.entities.verification import VerificationResult
from src.errors import (
    BrokerError,
    ConflictingState,
    InvalidTransition,
    NotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)

DRAFT = FixtureStatus.DRAFT.value
APPROVED = FixtureStatus.APPROVED.value
REJECTED = FixtureStatus.REJECTED.value

# Draft is the entry state only; nothing leads back to it.
TRANSITIONS: dict[str, frozenset[str]] = {
    DRAFT: frozenset({APPROVED, REJECTED}),
    APPROVED: frozenset({REJECTED}),
    REJECTED: frozenset({APPROVED}),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


async def get_fixture(db: AsyncSession, fixture_id: str) -> Fixture:
    result = await db.execute(
        select(Fixture)
        .where(Fixture.id == fixture_id)
        .execution_options(populate_existing=True)
    )
    fixture = result.scalar_one_or_none()
    if fixture is None:
        raise NotFound(f"Fixture {fixture_id} not found")
    return fixture


def _audit(
    db: AsyncSession,
    fixture_id: str,
    old_status: str | None,
    new_status: str,
    actor: str,
    detail: str | None = None,
) -> None:
    db.add(
        FixtureAuditLog(
            fixture_id=fixture_id,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            detail=detail,
        )
    )


async def propose_fixture(
    db: AsyncSession,
    source: str,
    service: str,
    service_versions: list[str] | str,
    operation: str,
    data: dict[str, Any],
    created_from: dict[str, Any] | None = None,
    priority: int | None = None,
    notes: str | None = None,
    actor: str = "system",
) -> Fixture:
    """Create a draft fixture. Several drafts per operation are allowed."""
    try:
        source = FixtureSource(source).value
    except ValueError:
        raise ValidationError("Invalid source. Must be consumer or provider") from None
    if isinstance(service_versions, str):
        service_versions = [service_versions]
    service_versions = [v for v in service_versions or [] if v]
    if not service_versions:
        raise ValidationError("At least one service version is required")
    if not operation or not operation.strip():
        raise ValidationError("Operation is required")
    if not isinstance(data, dict) or "request" not in data or "response" not in data:
        raise ValidationError(
            "Fixture data must contain request and response",
            detail="Expected {'request': ..., 'response': ...}",
        )
    await directory.get_service(db, service)

    fixture = Fixture(
        id=str(uuid.uuid4()),
        service=service,
        operation=operation,
        service_versions=service_versions,
        data=data,
        source=source,
        priority=settings.default_fixture_priority if priority is None else priority,
        status=DRAFT,
        created_from=created_from or {},
        notes=notes,
    )
    db.add(fixture)
    await db.flush()
    _audit(db, fixture.id, None, DRAFT, actor, detail="proposed")
    await db.commit()
    logger.info("Proposed %s fixture %s for %s %s", source, fixture.id, service, operation)
    return await get_fixture(db, fixture.id)


async def propose_from_interaction(
    db: AsyncSession,
    interaction_id: str,
    service_versions: list[str] | None = None,
    actor: str = "system",
) -> Fixture:
    """Draft a consumer-sourced fixture from a recorded interaction."""
    interaction = (
        await db.execute(select(Interaction).where(Interaction.id == interaction_id))
    ).scalar_one_or_none()
    if interaction is None:
        raise NotFound(f"Interaction {interaction_id} not found")
    versions = service_versions or (
        [interaction.provider_version] if interaction.provider_version else []
    )
    if not versions:
        raise ValidationError(
            "Provider version unknown for this interaction",
            detail="Pass service_versions explicitly",
        )
    return await propose_fixture(
        db,
        source=FixtureSource.CONSUMER.value,
        service=interaction.provider,
        service_versions=versions,
        operation=interaction.operation,
        data={"request": interaction.request, "response": interaction.response},
        created_from={"type": "interaction", "id": interaction.id},
        actor=actor,
    )


async def propose_from_verification(
    db: AsyncSession,
    result_id: str,
    interaction_id: str,
    actor: str = "system",
) -> Fixture:
    """Draft a provider-sourced fixture from a passing verification outcome."""
    verification = (
        await db.execute(select(VerificationResult).where(VerificationResult.id == result_id))
    ).scalar_one_or_none()
    if verification is None:
        raise NotFound(f"Verification result {result_id} not found")
    outcome = next(
        (o for o in verification.outcomes if o.get("interaction_id") == interaction_id), None
    )
    if outcome is None:
        raise NotFound(f"Interaction {interaction_id} is not part of result {result_id}")
    if not outcome.get("success"):
        raise ValidationError("Only passing verification outcomes can become fixtures")

    interaction = (
        await db.execute(select(Interaction).where(Interaction.id == interaction_id))
    ).scalar_one_or_none()
    if interaction is None:
        raise NotFound(f"Interaction {interaction_id} not found")
    return await propose_fixture(
        db,
        source=FixtureSource.PROVIDER.value,
        service=verification.provider,
        service_versions=[verification.provider_version],
        operation=interaction.operation,
        data={
            "request": interaction.request,
            "response": outcome.get("actual_response") or interaction.response,
        },
        created_from={
            "type": "verification",
            "id": verification.id,
            "interaction_id": interaction_id,
        },
        actor=actor,
    )


async def _transition(
    db: AsyncSession,
    fixture_id: str,
    target: str,
    actor: str,
    notes: str | None = None,
    allowed_from: Iterable[str] | None = None,
) -> Fixture:
    fixture = await get_fixture(db, fixture_id)
    current = fixture.status
    if current == target and target != DRAFT:
        return fixture
    if not can_transition(current, target) or (
        allowed_from is not None and current not in allowed_from
    ):
        raise InvalidTransition(current, target)

    now = datetime.now(timezone.utc)
    values: dict[str, Any] = {"status": target, "updated_at": now}
    if target == APPROVED:
        values["approved_by"] = actor
        values["approved_at"] = now
    if notes is not None:
        values["notes"] = notes

    result = await db.execute(
        update(Fixture)
        .where(Fixture.id == fixture_id, Fixture.status == current)
        .values(**values)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise ConflictingState(
            f"Fixture {fixture_id} was modified concurrently",
            detail=f"Expected status {current}; reload and retry",
        )
    _audit(db, fixture_id, current, target, actor, detail=notes)
    await db.commit()
    logger.info("Fixture %s: %s -> %s by %s", fixture_id, current, target, actor)
    return await get_fixture(db, fixture_id)


async def approve(
    db: AsyncSession, fixture_id: str, approved_by: str, notes: str | None = None
) -> Fixture:
    """draft → approved or rejected → approved. Approving twice is a no-op."""
    return await _transition(db, fixture_id, APPROVED, approved_by, notes)


async def reject(
    db: AsyncSession, fixture_id: str, rejected_by: str, notes: str | None = None
) -> Fixture:
    """draft → rejected. Approved fixtures are revoked, not rejected."""
    return await _transition(db, fixture_id, REJECTED, rejected_by, notes, allowed_from=(DRAFT,))


async def revoke(
    db: AsyncSession, fixture_id: str, revoked_by: str, notes: str | None = None
) -> Fixture:
    """approved → rejected. Revoking a rejected fixture is a no-op."""
    return await _transition(
        db, fixture_id, REJECTED, revoked_by, notes, allowed_from=(APPROVED,)
    )


async def transition(
    db: AsyncSession, fixture_id: str, target: str, actor: str, notes: str | None = None
) -> Fixture:
    try:
        target = FixtureStatus(target).value
    except ValueError:
        raise ValidationError("Invalid status. Must be draft, approved, or rejected") from None
    return await _transition(db, fixture_id, target, actor, notes)


async def approve_all(
    db: AsyncSession,
    approved_by: str,
    fixture_ids: list[str] | None = None,
    service: str | None = None,
) -> list[dict[str, Any]]:
    """Approve each fixture independently and report per-item outcomes.

    With no ids, every draft of ``service`` is approved. One failure does not
    undo the approvals that already went through.
    """
    if fixture_ids is None:
        if not service:
            raise ValidationError("Either fixture_ids or service is required")
        result = await db.execute(
            select(Fixture.id)
            .where(Fixture.service == service, Fixture.status == DRAFT)
            .order_by(Fixture.created_at)
        )
        fixture_ids = list(result.scalars().all())

    report = []
    for fixture_id in fixture_ids:
        try:
            fixture = await approve(db, fixture_id, approved_by)
            report.append({"fixture_id": fixture_id, "ok": True, "status": fixture.status})
        except BrokerError as e:
            logger.warning("Bulk approval skipped fixture %s: %s", fixture_id, e.message)
            report.append({
                "fixture_id": fixture_id,
                "ok": False,
                "status": None,
                "error": type(e).__name__,
                "message": e.message,
            })
    return report


async def list_fixtures(
    db: AsyncSession,
    service: str | None = None,
    operation: str | None = None,
    service_version: str | None = None,
    status: str | None = None,
) -> list[Fixture]:
    query = select(Fixture).order_by(Fixture.priority.desc(), Fixture.created_at.desc())
    if service:
        query = query.where(Fixture.service == service)
    if operation:
        query = query.where(Fixture.operation == operation)
    if status:
        query = query.where(Fixture.status == status)
    result = await db.execute(query.execution_options(populate_existing=True))
    fixtures = list(result.scalars().all())
    if service_version:
        fixtures = [f for f in fixtures if service_version in (f.service_versions or [])]
    return fixtures


async def select_for_mock(
    db: AsyncSession, service: str, service_version: str, operation: str
) -> list[Fixture]:
    """Approved fixtures for the mock server, best candidate first.

    Ordered by priority (highest first), then newest first, then id.
    """
    fixtures = await list_fixtures(
        db,
        service=service,
        operation=operation,
        service_version=service_version,
        status=APPROVED,
    )
    return sorted(
        fixtures,
        key=lambda f: (-(f.priority or 0), -f.created_at.timestamp(), f.id),
    )


async def fixture_history(db: AsyncSession, fixture_id: str) -> list[FixtureAuditLog]:
    await get_fixture(db, fixture_id)
    result = await db.execute(
        select(FixtureAuditLog)
        .where(FixtureAuditLog.fixture_id == fixture_id)
        .order_by(FixtureAuditLog.id)
    )
    return list(result.scalars().all())
