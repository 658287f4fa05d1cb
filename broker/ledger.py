"""Which version of each service runs in each environment.

Every (service, environment) key has a DeploymentSlot row whose ``revision``
is compared-and-swapped on each activation. The swap, the deactivation of the
previous row and the insert of the new active row share one transaction, so
at most one DeploymentState is active per key at any instant.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from broker import directory
from broker.events import DeploymentRecorded, EventBus, get_event_bus
from src.config import settings
from src.database import conflict_free_insert
from src.entities.deployment import DeploymentSlot, DeploymentState, DeploymentStatus
from src.errors import ConflictingState, ValidationError

logger = logging.getLogger(__name__)


async def read_slot(db: AsyncSession, service: str, environment: str) -> DeploymentSlot:
    """Return the arena entry for the key, creating it at revision 0."""
    await db.execute(
        conflict_free_insert(db, DeploymentSlot).values(
            service=service, environment=environment, active_deployment_id=None, revision=0
        )
    )
    result = await db.execute(
        select(DeploymentSlot)
        .where(DeploymentSlot.service == service, DeploymentSlot.environment == environment)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def swap_slot(
    db: AsyncSession,
    service: str,
    environment: str,
    expected_revision: int,
    deployment_id: str,
) -> int:
    """Point the slot at ``deployment_id`` if nobody moved it since ``expected_revision``.

    Returns the new revision. Does not commit.
    """
    result = await db.execute(
        update(DeploymentSlot)
        .where(
            DeploymentSlot.service == service,
            DeploymentSlot.environment == environment,
            DeploymentSlot.revision == expected_revision,
        )
        .values(active_deployment_id=deployment_id, revision=expected_revision + 1)
    )
    if result.rowcount == 0:
        raise ConflictingState(
            f"Concurrent deployment of {service} to {environment}",
            detail="Another deployment was activated first; retry the request",
        )
    return expected_revision + 1


async def record_deployment(
    db: AsyncSession,
    service: str,
    version: str,
    environment: str,
    deployed_by: str,
    git_sha: str | None = None,
    status: str = DeploymentStatus.SUCCESSFUL.value,
    failure_reason: str | None = None,
    bus: EventBus | None = None,
) -> DeploymentState:
    """Record a deployment attempt.

    Successful deployments become the active row for (service, environment);
    failed ones are stored inactive with their failure reason.
    """
    try:
        status = DeploymentStatus(status).value
    except ValueError:
        raise ValidationError("Invalid status. Must be successful or failed") from None
    if not environment or not environment.strip():
        raise ValidationError("Environment is required")

    await directory.get_service(db, service)
    await directory.get_version(db, service, version)

    deployment = DeploymentState(
        id=str(uuid.uuid4()),
        service=service,
        version=version,
        environment=environment,
        status=status,
        deployed_at=datetime.now(timezone.utc),
        deployed_by=deployed_by,
        git_sha=git_sha,
    )

    if status == DeploymentStatus.FAILED.value:
        deployment.active = False
        deployment.failure_reason = failure_reason or "unspecified"
        db.add(deployment)
        await db.commit()
        logger.warning(
            "Recorded failed deployment of %s@%s to %s: %s",
            service, version, environment, deployment.failure_reason,
        )
        return deployment

    try:
        slot = await read_slot(db, service, environment)
        await swap_slot(db, service, environment, slot.revision, deployment.id)
        await db.execute(
            update(DeploymentState)
            .where(
                DeploymentState.service == service,
                DeploymentState.environment == environment,
                DeploymentState.active.is_(True),
            )
            .values(active=False)
        )
        deployment.active = True
        db.add(deployment)
        await db.commit()
    except ConflictingState:
        await db.rollback()
        raise
    except IntegrityError:
        await db.rollback()
        raise ConflictingState(
            f"Concurrent deployment of {service} to {environment}",
            detail="Another deployment was activated first; retry the request",
        ) from None

    logger.info("Deployed %s@%s to %s (by %s)", service, version, environment, deployed_by)

    await (bus or get_event_bus()).publish(
        db,
        DeploymentRecorded(
            deployment_id=deployment.id,
            service=service,
            version=version,
            environment=environment,
        ),
    )
    return deployment


async def get_active(db: AsyncSession, service: str, environment: str) -> DeploymentState | None:
    result = await db.execute(
        select(DeploymentState)
        .where(
            DeploymentState.service == service,
            DeploymentState.environment == environment,
            DeploymentState.active.is_(True),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_history(
    db: AsyncSession,
    service: str,
    environment: str | None = None,
    limit: int | None = None,
) -> list[DeploymentState]:
    """Deployments of ``service``, newest first, including failed attempts."""
    query = select(DeploymentState).where(DeploymentState.service == service)
    if environment:
        query = query.where(DeploymentState.environment == environment)
    query = query.order_by(DeploymentState.deployed_at.desc()).limit(
        limit or settings.history_limit
    )
    result = await db.execute(query.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def list_active(db: AsyncSession, environment: str | None = None) -> list[DeploymentState]:
    query = select(DeploymentState).where(DeploymentState.active.is_(True))
    if environment:
        query = query.where(DeploymentState.environment == environment)
    query = query.order_by(DeploymentState.environment, DeploymentState.service)
    result = await db.execute(query.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def list_environments(db: AsyncSession) -> list[str]:
    result = await db.execute(select(DeploymentState.environment).distinct())
    return sorted(result.scalars().all())
