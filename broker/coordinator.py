"""Verification tasks for providers and the results they submit.

A VerificationTask asks one provider version to prove it satisfies the
interactions one consumer version recorded against it. Tasks are created
idempotently (one open task per consumer/provider version tuple) whenever a
contract grows or a provider version becomes active, and are retired when a
VerificationResult is submitted. Results are append-only evidence.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.database import conflict_free_insert
from src.entities.contract import Contract, ContractStatus
from src.entities.deployment import DeploymentState, DeploymentStatus
from src.entities.interaction import Interaction
from src.entities.verification import VerificationResult, VerificationTask
from src.errors import DuplicateTask, NotFound, ValidationError

logger = logging.getLogger(__name__)


async def active_versions(db: AsyncSession, service: str) -> list[str]:
    """Distinct versions of ``service`` currently active in any environment."""
    result = await db.execute(
        select(DeploymentState.version)
        .where(DeploymentState.service == service, DeploymentState.active.is_(True))
        .distinct()
    )
    return sorted(result.scalars().all())


async def has_result(
    db: AsyncSession, consumer: str, consumer_version: str, provider: str, provider_version: str
) -> bool:
    result = await db.execute(
        select(VerificationResult.id)
        .where(
            VerificationResult.consumer == consumer,
            VerificationResult.consumer_version == consumer_version,
            VerificationResult.provider == provider,
            VerificationResult.provider_version == provider_version,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _has_interactions(
    db: AsyncSession, consumer: str, consumer_version: str, provider: str
) -> bool:
    result = await db.execute(
        select(Interaction.id)
        .where(
            Interaction.consumer == consumer,
            Interaction.consumer_version == consumer_version,
            Interaction.provider == provider,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def collect_evidence(
    db: AsyncSession,
    consumer: str,
    consumer_version: str,
    provider: str,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Newest ``limit`` interactions for the combination, as task evidence."""
    limit = settings.verification_evidence_limit if limit is None else limit
    query = (
        select(Interaction)
        .where(
            Interaction.consumer == consumer,
            Interaction.consumer_version == consumer_version,
            Interaction.provider == provider,
        )
        .order_by(Interaction.timestamp.desc(), Interaction.id)
    )
    if limit:
        query = query.limit(limit)
    result = await db.execute(query)
    return [interaction.as_evidence() for interaction in result.scalars().all()]


async def _open_task(
    db: AsyncSession, consumer: str, consumer_version: str, provider: str, provider_version: str
) -> VerificationTask | None:
    result = await db.execute(
        select(VerificationTask)
        .where(
            VerificationTask.consumer == consumer,
            VerificationTask.consumer_version == consumer_version,
            VerificationTask.provider == provider,
            VerificationTask.provider_version == provider_version,
            VerificationTask.closed_at.is_(None),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _insert_task(
    db: AsyncSession,
    contract_id: str | None,
    consumer: str,
    consumer_version: str,
    provider: str,
    provider_version: str,
    evidence: list[dict[str, Any]],
) -> None:
    """Conditional insert on the open-task unique index."""
    result = await db.execute(
        conflict_free_insert(db, VerificationTask).values(
            id=str(uuid.uuid4()),
            contract_id=contract_id,
            consumer=consumer,
            consumer_version=consumer_version,
            provider=provider,
            provider_version=provider_version,
            interactions=evidence,
        )
    )
    if result.rowcount == 0:
        raise DuplicateTask(
            f"Open task exists for {consumer}@{consumer_version} -> {provider}@{provider_version}"
        )


async def upsert_task(
    db: AsyncSession,
    contract_id: str | None,
    consumer: str,
    consumer_version: str,
    provider: str,
    provider_version: str,
    evidence: list[dict[str, Any]],
) -> VerificationTask:
    """Create the open task for the tuple, or refresh the evidence of the existing one.

    Does not commit.
    """
    try:
        await _insert_task(
            db, contract_id, consumer, consumer_version, provider, provider_version, evidence
        )
        logger.info(
            "Created verification task: %s@%s -> %s@%s (%d interaction(s))",
            consumer, consumer_version, provider, provider_version, len(evidence),
        )
    except DuplicateTask:
        await db.execute(
            update(VerificationTask)
            .where(
                VerificationTask.consumer == consumer,
                VerificationTask.consumer_version == consumer_version,
                VerificationTask.provider == provider,
                VerificationTask.provider_version == provider_version,
                VerificationTask.closed_at.is_(None),
            )
            .values(interactions=evidence)
        )
    return await _open_task(db, consumer, consumer_version, provider, provider_version)


async def _ensure_tasks(
    db: AsyncSession,
    contract_id: str | None,
    consumer: str,
    consumer_version: str,
    provider: str,
    provider_versions: Iterable[str],
) -> list[VerificationTask]:
    tasks = []
    evidence = None
    for provider_version in provider_versions:
        if await has_result(db, consumer, consumer_version, provider, provider_version):
            continue
        if evidence is None:
            evidence = await collect_evidence(db, consumer, consumer_version, provider)
            if not evidence:
                return []
        task = await upsert_task(
            db, contract_id, consumer, consumer_version, provider, provider_version, evidence
        )
        if task is not None:
            tasks.append(task)
    return tasks


async def on_contract_updated(
    db: AsyncSession, contract_id: str, consumer_version: str | None = None
) -> list[VerificationTask]:
    """Open tasks for every active provider version lacking evidence for this contract.

    ``consumer_version`` defaults to the contract's newest consumer version.
    """
    result = await db.execute(select(Contract).where(Contract.id == contract_id))
    contract = result.scalar_one_or_none()
    if contract is None:
        raise NotFound(f"Contract {contract_id} not found")

    consumer_version = consumer_version or contract.consumer_version
    provider_versions = await active_versions(db, contract.provider_name)
    tasks = await _ensure_tasks(
        db,
        contract.id,
        contract.consumer_name,
        consumer_version,
        contract.provider_name,
        provider_versions,
    )
    await db.commit()
    return tasks


async def on_deployment_recorded(db: AsyncSession, deployment_id: str) -> list[VerificationTask]:
    """Open tasks for consumers of a newly active provider version."""
    result = await db.execute(select(DeploymentState).where(DeploymentState.id == deployment_id))
    deployment = result.scalar_one_or_none()
    if deployment is None:
        raise NotFound(f"Deployment {deployment_id} not found")
    if not deployment.active or deployment.status != DeploymentStatus.SUCCESSFUL.value:
        return []

    contracts = (
        await db.execute(
            select(Contract).where(
                Contract.provider_name == deployment.service,
                Contract.status != ContractStatus.ARCHIVED.value,
            )
        )
    ).scalars().all()

    tasks: list[VerificationTask] = []
    for contract in contracts:
        consumer_versions = {contract.consumer_version}
        consumer_versions.update(await active_versions(db, contract.consumer_name))
        for consumer_version in sorted(consumer_versions):
            if not await _has_interactions(
                db, contract.consumer_name, consumer_version, contract.provider_name
            ):
                continue
            tasks.extend(
                await _ensure_tasks(
                    db,
                    contract.id,
                    contract.consumer_name,
                    consumer_version,
                    contract.provider_name,
                    [deployment.version],
                )
            )
    await db.commit()
    return tasks


async def request_verification(
    db: AsyncSession,
    consumer: str,
    consumer_version: str,
    provider: str,
    provider_version: str,
) -> VerificationTask:
    """Open (or return) a task for an explicit tuple, even if results already exist.

    This is how a provider asks to re-verify after a failed run.
    """
    evidence = await collect_evidence(db, consumer, consumer_version, provider)
    if not evidence:
        raise NotFound(
            f"No interactions recorded for {consumer}@{consumer_version} against {provider}"
        )
    contract_id = (
        await db.execute(
            select(Contract.id).where(
                Contract.consumer_name == consumer, Contract.provider_name == provider
            )
        )
    ).scalar_one_or_none()
    task = await upsert_task(
        db, contract_id, consumer, consumer_version, provider, provider_version, evidence
    )
    await db.commit()
    return task


async def handle_contract_updated(db: AsyncSession, event) -> None:
    await on_contract_updated(db, event.contract_id, event.consumer_version)


async def handle_deployment_recorded(db: AsyncSession, event) -> None:
    await on_deployment_recorded(db, event.deployment_id)


def _normalize_outcomes(outcomes: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not outcomes:
        raise ValidationError(
            "Verification outcomes are required",
            detail="A verification run must report at least one interaction outcome",
        )
    normalized = []
    for index, outcome in enumerate(outcomes):
        if not outcome.get("interaction_id"):
            raise ValidationError(f"Outcome {index} is missing interaction_id")
        if not isinstance(outcome.get("success"), bool):
            raise ValidationError(f"Outcome {index} is missing a boolean success flag")
        normalized.append({
            "interaction_id": outcome["interaction_id"],
            "success": outcome["success"],
            "actual_response": outcome.get("actual_response"),
            "error": outcome.get("error"),
        })
    return normalized


async def get_task(db: AsyncSession, task_id: str) -> VerificationTask:
    result = await db.execute(
        select(VerificationTask)
        .where(VerificationTask.id == task_id)
        .execution_options(populate_existing=True)
    )
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFound(f"Verification task {task_id} not found")
    return task


async def submit_verification_result(
    db: AsyncSession,
    task_id: str,
    outcomes: list[dict[str, Any]],
    provider_version: str | None = None,
    provider_git_sha: str | None = None,
) -> VerificationResult:
    """Persist the outcome of a verification run and retire its task.

    A task can be answered once; a closed or unknown task raises NotFound.
    """
    task = await get_task(db, task_id)
    if not task.is_open:
        raise NotFound(f"Verification task {task_id} is already closed")
    if provider_version and provider_version != task.provider_version:
        raise ValidationError(
            f"Task {task_id} verifies {task.provider}@{task.provider_version}, "
            f"not {provider_version}"
        )
    normalized = _normalize_outcomes(outcomes)
    passed = sum(1 for o in normalized if o["success"])
    total = len(normalized)

    closed = await db.execute(
        update(VerificationTask)
        .where(VerificationTask.id == task_id, VerificationTask.closed_at.is_(None))
        .values(closed_at=datetime.now(timezone.utc))
    )
    if closed.rowcount == 0:
        await db.rollback()
        raise NotFound(f"Verification task {task_id} is already closed")

    spec_type = (
        await db.execute(select(Contract.spec_type).where(Contract.id == task.contract_id))
    ).scalar_one_or_none()

    verification = VerificationResult(
        id=str(uuid.uuid4()),
        task_id=task.id,
        provider=task.provider,
        provider_version=task.provider_version,
        provider_git_sha=provider_git_sha,
        consumer=task.consumer,
        consumer_version=task.consumer_version,
        spec_type=spec_type or "openapi",
        outcomes=normalized,
        passed=passed,
        failed=total - passed,
        total=total,
    )
    db.add(verification)
    await db.commit()
    await db.refresh(verification)

    logger.info(
        "Received verification results for %s@%s against %s@%s: %d/%d passed",
        task.provider, task.provider_version, task.consumer, task.consumer_version, passed, total,
    )
    return verification


async def list_pending_tasks(
    db: AsyncSession, provider: str | None = None, consumer: str | None = None
) -> list[VerificationTask]:
    query = (
        select(VerificationTask)
        .where(VerificationTask.closed_at.is_(None))
        .order_by(VerificationTask.created_at.desc())
    )
    if provider:
        query = query.where(VerificationTask.provider == provider)
    if consumer:
        query = query.where(VerificationTask.consumer == consumer)
    result = await db.execute(query.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def verification_history(
    db: AsyncSession, provider: str, limit: int | None = None
) -> list[VerificationResult]:
    result = await db.execute(
        select(VerificationResult)
        .where(VerificationResult.provider == provider)
        .order_by(VerificationResult.submitted_at.desc())
        .limit(limit or settings.history_limit)
    )
    return list(result.scalars().all())


async def verification_stats(db: AsyncSession, provider: str, days: int = 30) -> dict[str, Any]:
    """Pass-rate statistics for a provider over the last ``days`` days."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    result = await db.execute(
        select(VerificationResult)
        .where(
            VerificationResult.provider == provider,
            VerificationResult.submitted_at >= cutoff,
        )
        .order_by(VerificationResult.submitted_at.desc())
    )
    recent = list(result.scalars().all())

    total_tests = sum(r.total for r in recent)
    total_passed = sum(r.passed for r in recent)
    return {
        "provider": provider,
        "total_verifications": len(recent),
        "average_pass_rate": round(total_passed / total_tests, 4) if total_tests else 0.0,
        "total_interactions_tested": total_tests,
        "unique_consumers": len({r.consumer for r in recent}),
        "recent_trends": [
            {
                "submitted_at": r.submitted_at,
                "pass_rate": round(r.passed / r.total, 4) if r.total else 0.0,
            }
            for r in reversed(recent[:7])
        ],
    }


async def compatibility_matrix(
    db: AsyncSession, provider: str | None = None, consumer: str | None = None
) -> list[dict[str, Any]]:
    """One entry per verified (consumer version, provider version) tuple.

    A tuple is "passed" when any of its results passed, otherwise "failed".
    Tuples with no result at all are absent (unverified).
    """
    query = select(VerificationResult).order_by(VerificationResult.submitted_at)
    if provider:
        query = query.where(VerificationResult.provider == provider)
    if consumer:
        query = query.where(VerificationResult.consumer == consumer)
    results = (await db.execute(query)).scalars().all()

    grouped: dict[tuple[str, str, str, str], list[VerificationResult]] = defaultdict(list)
    for r in results:
        grouped[(r.consumer, r.consumer_version, r.provider, r.provider_version)].append(r)

    matrix = []
    for (c, cv, p, pv), rows in sorted(grouped.items()):
        matrix.append({
            "consumer": c,
            "consumer_version": cv,
            "provider": p,
            "provider_version": pv,
            "status": "passed" if any(r.succeeded for r in rows) else "failed",
            "results": len(rows),
            "last_verified_at": rows[-1].submitted_at,
        })
    return matrix
