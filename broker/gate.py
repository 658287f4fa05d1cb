"""Answers "can this version deploy to this environment?".

``can_deploy`` is a read-only query over contracts, the deployment ledger and
verification results. It never creates tasks and never raises for missing
history: a service with no contracts is always allowed.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

import semver
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.entities.contract import Contract, ContractStatus
from src.entities.deployment import DeploymentState
from src.entities.interaction import Interaction
from src.entities.service import ServiceRole
from src.entities.verification import VerificationResult
from src.errors import ValidationError

logger = logging.getLogger(__name__)

NO_CONTRACTS = "no contracts to verify"
NOT_VERIFIED = "not verified"
VERIFICATION_FAILED = "verification failed"
ALL_PASSED = "all verifications passed"
NO_DEPLOYED_COUNTERPARTS = "no deployed counterparts"

SEMVER_MODES = ("none", "patch", "minor")

# Per-counterpart statuses
PASSED = "passed"
FAILED = "failed"
UNVERIFIED = "not verified"
NOT_DEPLOYED = "not deployed"
NO_INTERACTIONS = "no interactions"


@dataclass
class CounterpartCheck:
    service: str
    version: str | None
    status: str
    verified_against: str | None = None


@dataclass
class Decision:
    allowed: bool
    reason: str
    message: str
    service: str
    version: str
    role: str
    environment: str
    providers: list[CounterpartCheck] = field(default_factory=list)
    consumers: list[CounterpartCheck] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def versions_compatible(required: str, verified: str, mode: str = "none") -> bool:
    """Whether evidence against ``verified`` may stand in for ``required``.

    ``patch`` accepts any version in the same major.minor line, ``minor`` any
    version in the same major line. Non-semver strings only match exactly.
    """
    if required == verified:
        return True
    if mode == "none":
        return False
    try:
        req = semver.Version.parse(required)
        got = semver.Version.parse(verified)
    except ValueError:
        return False
    if req.major != got.major:
        return False
    if mode == "patch":
        return req.minor == got.minor
    return True


async def _active_version(db: AsyncSession, service: str, environment: str) -> str | None:
    result = await db.execute(
        select(DeploymentState.version).where(
            DeploymentState.service == service,
            DeploymentState.environment == environment,
            DeploymentState.active.is_(True),
        )
    )
    return result.scalars().first()


async def _check_pair(
    db: AsyncSession,
    consumer: str,
    consumer_version: str,
    provider: str,
    provider_version: str,
    mode: str,
) -> tuple[str, str | None]:
    """Status of one (consumer version, provider version) pair.

    Any passing result counts; a failed one only blocks when no passing
    result exists for the same pair.
    """
    result = await db.execute(
        select(VerificationResult).where(
            VerificationResult.consumer == consumer,
            VerificationResult.consumer_version == consumer_version,
            VerificationResult.provider == provider,
        )
    )
    candidates = [
        r for r in result.scalars().all()
        if versions_compatible(provider_version, r.provider_version, mode)
    ]
    passing = [r for r in candidates if r.succeeded]
    if passing:
        exact = [r for r in passing if r.provider_version == provider_version]
        return PASSED, (exact or passing)[0].provider_version
    if candidates:
        return FAILED, candidates[0].provider_version
    return UNVERIFIED, None


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


async def _check_providers(
    db: AsyncSession, consumer: str, version: str, environment: str, mode: str
) -> list[CounterpartCheck]:
    result = await db.execute(
        select(Contract.provider_name)
        .where(
            Contract.consumer_name == consumer,
            Contract.status != ContractStatus.ARCHIVED.value,
        )
        .order_by(Contract.provider_name)
    )
    checks = []
    for provider in result.scalars().all():
        provider_version = await _active_version(db, provider, environment)
        if provider_version is None:
            checks.append(CounterpartCheck(provider, None, NOT_DEPLOYED))
            continue
        status, verified_against = await _check_pair(
            db, consumer, version, provider, provider_version, mode
        )
        checks.append(CounterpartCheck(provider, provider_version, status, verified_against))
    return checks


async def _check_consumers(
    db: AsyncSession, provider: str, version: str, environment: str, mode: str
) -> list[CounterpartCheck]:
    result = await db.execute(
        select(Contract.consumer_name)
        .where(
            Contract.provider_name == provider,
            Contract.status != ContractStatus.ARCHIVED.value,
        )
        .order_by(Contract.consumer_name)
    )
    checks = []
    for consumer in result.scalars().all():
        consumer_version = await _active_version(db, consumer, environment)
        if consumer_version is None:
            checks.append(CounterpartCheck(consumer, None, NOT_DEPLOYED))
            continue
        if not await _has_interactions(db, consumer, consumer_version, provider):
            checks.append(CounterpartCheck(consumer, consumer_version, NO_INTERACTIONS))
            continue
        status, verified_against = await _check_pair(
            db, consumer, consumer_version, provider, version, mode
        )
        checks.append(CounterpartCheck(consumer, consumer_version, status, verified_against))
    return checks


def _issue(check: CounterpartCheck, role: str) -> str:
    if role == ServiceRole.CONSUMER.value:
        pair = f"provider {check.service}@{check.version}"
    else:
        pair = f"consumer {check.service}@{check.version}"
    if check.status == FAILED:
        return f"Verification failed against {pair}"
    return f"No verification result against {pair}"


async def can_deploy(
    db: AsyncSession,
    service: str,
    version: str,
    role: str,
    environment: str,
    semver_compatibility: str = "none",
) -> Decision:
    """Decide whether ``service@version`` in ``role`` may deploy to ``environment``."""
    try:
        role = ServiceRole(role).value
    except ValueError:
        raise ValidationError(
            f"Invalid role {role!r}. Must be one of: consumer, provider"
        ) from None
    if semver_compatibility not in SEMVER_MODES:
        raise ValidationError(
            f"Invalid semver_compatibility {semver_compatibility!r}. "
            f"Must be one of: {', '.join(SEMVER_MODES)}"
        )

    decision = Decision(
        allowed=True,
        reason=NO_CONTRACTS,
        message="",
        service=service,
        version=version,
        role=role,
        environment=environment,
    )
    if role == ServiceRole.CONSUMER.value:
        checks = await _check_providers(db, service, version, environment, semver_compatibility)
        decision.providers = checks
    else:
        checks = await _check_consumers(db, service, version, environment, semver_compatibility)
        decision.consumers = checks

    if not checks:
        decision.message = f"{service} has no {role} contracts"
        return decision

    blocking = [c for c in checks if c.status in (FAILED, UNVERIFIED)]
    decision.issues = [_issue(c, role) for c in blocking]

    if any(c.status == FAILED for c in blocking):
        decision.allowed = False
        decision.reason = VERIFICATION_FAILED
    elif blocking:
        decision.allowed = False
        decision.reason = NOT_VERIFIED
    elif any(c.status == PASSED for c in checks):
        decision.reason = ALL_PASSED
    else:
        decision.reason = NO_DEPLOYED_COUNTERPARTS

    verdict = "can" if decision.allowed else "cannot"
    decision.message = f"{service}@{version} {verdict} deploy to {environment}: {decision.reason}"
    logger.info(
        "can-i-deploy %s@%s (%s) to %s: allowed=%s reason=%s",
        service, version, role, environment, decision.allowed, decision.reason,
    )
    return decision
