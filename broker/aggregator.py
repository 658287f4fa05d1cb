"""Contract aggregator — maintains the Contract view over recorded Interactions.

Interactions are the ledger; Contract rows are a materialized view of it.
``record_interaction`` keeps the view current incrementally with atomic SQL
updates, and ``rebuild_contracts`` recomputes every rollup from the ledger
when the view needs repair.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from broker import directory
from broker.events import ContractUpdated, EventBus, get_event_bus
from src.config import settings
from src.database import conflict_free_insert
from src.entities.contract import Contract, ContractStatus
from src.entities.interaction import Interaction
from src.entities.service import Service, ServiceRole
from src.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("provider", "consumer", "consumer_version", "operation")


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_interaction(payload: dict[str, Any]) -> None:
    """Reject interactions missing fields the contract view depends on."""
    missing = [f for f in _REQUIRED_FIELDS if not str(payload.get(f) or "").strip()]
    if missing:
        raise ValidationError(
            "Missing required interaction fields",
            detail=f"Missing or empty: {', '.join(missing)}",
        )
    response = payload.get("response")
    if not isinstance(response, dict) or response.get("status") is None:
        raise ValidationError(
            "Missing required interaction fields",
            detail="response.status is required",
        )
    if not isinstance(payload.get("request"), dict):
        raise ValidationError("Missing required interaction fields", detail="request is required")


async def _provider_spec_type(db: AsyncSession, provider: str) -> str:
    result = await db.execute(select(Service.spec_type).where(Service.name == provider))
    return result.scalar_one_or_none() or "openapi"


async def _resolve_contract(
    db: AsyncSession,
    consumer: str,
    consumer_version: str,
    provider: str,
    provider_version: str | None,
    seen_at: datetime,
) -> str:
    """Return the id of the (consumer, provider) contract, creating it if absent."""
    await db.execute(
        conflict_free_insert(db, Contract).values(
            id=str(uuid.uuid4()),
            consumer_name=consumer,
            consumer_version=consumer_version,
            provider_name=provider,
            provider_version=provider_version,
            spec_type=await _provider_spec_type(db, provider),
            interaction_count=0,
            status=ContractStatus.ACTIVE.value,
            first_seen=seen_at,
            last_seen=seen_at,
        )
    )
    result = await db.execute(
        select(Contract.id).where(
            Contract.consumer_name == consumer,
            Contract.provider_name == provider,
        )
    )
    return result.scalar_one()


async def record_interaction(
    db: AsyncSession,
    payload: dict[str, Any],
    bus: EventBus | None = None,
) -> str:
    """Append an interaction and roll it into its contract.

    Returns the contract id. Identical re-sends are stored as new evidence
    rows. Publishes ContractUpdated after the write commits.
    """
    validate_interaction(payload)

    consumer = payload["consumer"]
    consumer_version = payload["consumer_version"]
    provider = payload["provider"]
    provider_version = payload.get("provider_version") or None
    seen_at = _as_utc(payload.get("timestamp"))

    # Both endpoints are tracked independently; a service may hold both roles.
    await directory.ensure_version(
        db,
        consumer,
        ServiceRole.CONSUMER.value,
        consumer_version,
        created_by=payload.get("recorded_by") or "interaction-recorder",
        git_sha=payload.get("consumer_git_sha"),
    )
    await directory.ensure_service(db, provider, ServiceRole.PROVIDER.value)

    contract_id = await _resolve_contract(
        db, consumer, consumer_version, provider, provider_version, seen_at
    )

    interaction = Interaction(
        id=str(uuid.uuid4()),
        provider=provider,
        provider_version=provider_version,
        operation=payload["operation"],
        consumer=consumer,
        consumer_version=consumer_version,
        consumer_git_sha=payload.get("consumer_git_sha"),
        environment=payload.get("environment") or "test",
        request=payload["request"],
        response=payload["response"],
        timestamp=seen_at,
        duration_ms=payload.get("duration_ms"),
        contract_id=contract_id,
    )
    db.add(interaction)
    await db.flush()

    is_newest = Contract.last_seen <= seen_at
    values = {
        "interaction_count": Contract.interaction_count + 1,
        "first_seen": case((Contract.first_seen > seen_at, seen_at), else_=Contract.first_seen),
        "last_seen": case((is_newest, seen_at), else_=Contract.last_seen),
        "consumer_version": case((is_newest, consumer_version), else_=Contract.consumer_version),
        "updated_at": datetime.now(timezone.utc),
    }
    if provider_version:
        values["provider_version"] = case(
            (is_newest, provider_version), else_=Contract.provider_version
        )
    await db.execute(update(Contract).where(Contract.id == contract_id).values(**values))
    await db.commit()

    logger.info(
        "Recorded interaction: %s@%s -> %s.%s (contract %s)",
        consumer, consumer_version, provider, payload["operation"], contract_id,
    )

    # The version whose evidence just grew, which may trail the contract's newest.
    await (bus or get_event_bus()).publish(
        db,
        ContractUpdated(
            contract_id=contract_id,
            consumer=consumer,
            consumer_version=consumer_version,
            provider=provider,
        ),
    )
    return contract_id


async def get_contract(db: AsyncSession, contract_id: str) -> Contract:
    result = await db.execute(
        select(Contract)
        .where(Contract.id == contract_id)
        .execution_options(populate_existing=True)
    )
    contract = result.scalar_one_or_none()
    if contract is None:
        raise NotFound(f"Contract {contract_id} not found")
    return contract


async def list_contracts(
    db: AsyncSession,
    consumer: str | None = None,
    provider: str | None = None,
    status: str | None = None,
    limit: int | None = None,
) -> list[Contract]:
    query = select(Contract).order_by(Contract.last_seen.desc())
    if consumer:
        query = query.where(Contract.consumer_name == consumer)
    if provider:
        query = query.where(Contract.provider_name == provider)
    if status:
        query = query.where(Contract.status == status)
    if limit:
        query = query.limit(limit)
    result = await db.execute(query.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def list_contract_interactions(
    db: AsyncSession, contract_id: str, limit: int | None = None
) -> list[Interaction]:
    await get_contract(db, contract_id)
    query = (
        select(Interaction)
        .where(Interaction.contract_id == contract_id)
        .order_by(Interaction.timestamp.desc())
    )
    if limit:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def set_contract_status(db: AsyncSession, contract_id: str, status: str) -> Contract:
    """Operator-set contract status (active, archived, deprecated)."""
    try:
        status = ContractStatus(status).value
    except ValueError:
        raise ValidationError(
            "Invalid status. Must be active, archived, or deprecated"
        ) from None
    await get_contract(db, contract_id)
    await db.execute(
        update(Contract)
        .where(Contract.id == contract_id)
        .values(status=status, updated_at=datetime.now(timezone.utc))
    )
    await db.commit()
    logger.info("Updated contract %s status to %s", contract_id, status)
    return await get_contract(db, contract_id)


async def propose_archival(db: AsyncSession, stale_days: int | None = None) -> list[Contract]:
    """Active contracts unseen for ``stale_days``. Proposals only; nothing is archived."""
    days = settings.contract_stale_days if stale_days is None else stale_days
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    result = await db.execute(
        select(Contract)
        .where(
            Contract.status == ContractStatus.ACTIVE.value,
            Contract.last_seen < cutoff,
        )
        .order_by(Contract.last_seen)
    )
    return list(result.scalars().all())


async def rebuild_contracts(db: AsyncSession) -> dict[str, int]:
    """Recompute every contract rollup from the Interaction ledger.

    Counts, first/last seen and the newest consumer/provider versions are all
    derived again; status is left alone since operators own it.
    """
    rollups = await db.execute(
        select(
            Interaction.contract_id,
            func.count(Interaction.id).label("interaction_count"),
            func.min(Interaction.timestamp).label("first_seen"),
            func.max(Interaction.timestamp).label("last_seen"),
        )
        .where(Interaction.contract_id.isnot(None))
        .group_by(Interaction.contract_id)
    )
    by_contract = {row.contract_id: row for row in rollups.all()}

    contracts = (await db.execute(select(Contract))).scalars().all()
    updated = 0
    for contract in contracts:
        row = by_contract.get(contract.id)
        if row is None:
            values = {"interaction_count": 0}
        else:
            newest = (
                await db.execute(
                    select(Interaction.consumer_version)
                    .where(Interaction.contract_id == contract.id)
                    .order_by(Interaction.timestamp.desc())
                    .limit(1)
                )
            ).scalar_one()
            newest_provider_version = (
                await db.execute(
                    select(Interaction.provider_version)
                    .where(
                        Interaction.contract_id == contract.id,
                        Interaction.provider_version.isnot(None),
                    )
                    .order_by(Interaction.timestamp.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
            values = {
                "interaction_count": row.interaction_count,
                "first_seen": row.first_seen,
                "last_seen": row.last_seen,
                "consumer_version": newest,
            }
            if newest_provider_version:
                values["provider_version"] = newest_provider_version

        if contract.interaction_count != values["interaction_count"]:
            updated += 1
        await db.execute(update(Contract).where(Contract.id == contract.id).values(**values))

    await db.commit()
    logger.info("Rebuilt %d contract(s), %d count(s) corrected", len(contracts), updated)
    return {"contracts": len(contracts), "corrected": updated}
