"""Named services, their roles and immutable versions."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import conflict_free_insert
from src.entities.service import Service, ServiceRole, ServiceVersion, SpecType
from src.errors import ImmutableVersion, NotFound, ValidationError

logger = logging.getLogger(__name__)


def _validate_role(role: str) -> str:
    try:
        return ServiceRole(role).value
    except ValueError:
        raise ValidationError(
            f"Invalid role {role!r}. Must be one of: consumer, provider"
        ) from None


def _validate_spec_type(spec_type: str | None) -> str | None:
    if spec_type is None:
        return None
    try:
        return SpecType(spec_type).value
    except ValueError:
        allowed = ", ".join(s.value for s in SpecType)
        raise ValidationError(f"Invalid spec type {spec_type!r}. Must be one of: {allowed}") from None


async def _load_service(db: AsyncSession, name: str) -> Service | None:
    result = await db.execute(
        select(Service)
        .where(Service.name == name)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def ensure_service(
    db: AsyncSession,
    name: str,
    role: str,
    spec_type: str | None = None,
    description: str | None = None,
    git_repository_url: str | None = None,
) -> Service:
    """Insert the service if absent and make sure it carries ``role``.

    Does not commit; callers own the transaction.
    """
    if not name or not name.strip():
        raise ValidationError("Service name is required")
    role = _validate_role(role)
    spec_type = _validate_spec_type(spec_type)

    role_column = Service.is_consumer if role == ServiceRole.CONSUMER.value else Service.is_provider
    await db.execute(
        conflict_free_insert(db, Service).values(
            id=str(uuid.uuid4()),
            name=name,
            is_consumer=role == ServiceRole.CONSUMER.value,
            is_provider=role == ServiceRole.PROVIDER.value,
            spec_type=spec_type or SpecType.OPENAPI.value,
            description=description,
            git_repository_url=git_repository_url,
        )
    )
    # A service may hold both roles; adding one never removes the other.
    await db.execute(
        update(Service)
        .where(Service.name == name, role_column.is_(False))
        .values({role_column.key: True})
    )

    changes = {}
    if spec_type:
        changes["spec_type"] = spec_type
    if description is not None:
        changes["description"] = description
    if git_repository_url is not None:
        changes["git_repository_url"] = git_repository_url
    if changes:
        await db.execute(update(Service).where(Service.name == name).values(**changes))

    return await _load_service(db, name)


async def register_service(
    db: AsyncSession,
    name: str,
    role: str,
    spec_type: str | None = None,
    description: str | None = None,
    git_repository_url: str | None = None,
) -> Service:
    """Register a service or add a role to an existing one."""
    service = await ensure_service(db, name, role, spec_type, description, git_repository_url)
    await db.commit()
    logger.info("Registered service %s (roles: %s)", service.name, ",".join(service.roles))
    return service


async def get_service(db: AsyncSession, name: str) -> Service:
    service = await _load_service(db, name)
    if service is None:
        raise NotFound(f"Service {name} not found")
    return service


async def list_services(db: AsyncSession, role: str | None = None) -> list[Service]:
    query = select(Service).order_by(Service.name)
    if role:
        role = _validate_role(role)
        if role == ServiceRole.CONSUMER.value:
            query = query.where(Service.is_consumer.is_(True))
        else:
            query = query.where(Service.is_provider.is_(True))
    result = await db.execute(query)
    return list(result.scalars().all())


async def _find_version(
    db: AsyncSession, name: str, version: str, role: str | None = None
) -> ServiceVersion | None:
    query = select(ServiceVersion).where(
        ServiceVersion.service_name == name,
        ServiceVersion.version == version,
    )
    if role:
        query = query.where(ServiceVersion.role == role)
    result = await db.execute(query.order_by(ServiceVersion.created_at).limit(1))
    return result.scalar_one_or_none()


async def ensure_version(
    db: AsyncSession,
    name: str,
    role: str,
    version: str,
    created_by: str = "unknown",
    git_sha: str | None = None,
) -> None:
    """Register ``name@version`` for ``role`` if it does not exist yet. Does not commit."""
    service = await ensure_service(db, name, role)
    await db.execute(
        conflict_free_insert(db, ServiceVersion).values(
            id=str(uuid.uuid4()),
            service_id=service.id,
            service_name=name,
            role=role,
            version=version,
            git_sha=git_sha,
            created_by=created_by,
        )
    )


def _same_content(existing: ServiceVersion, spec, git_sha, package_json) -> bool:
    return (
        existing.spec == spec
        and (existing.git_sha or None) == (git_sha or None)
        and existing.package_json == package_json
    )


async def upload_spec(
    db: AsyncSession,
    name: str,
    role: str,
    version: str,
    spec: dict | None = None,
    git_sha: str | None = None,
    package_json: dict | None = None,
    created_by: str = "unknown",
    spec_type: str | None = None,
) -> ServiceVersion:
    """Publish a new immutable version of a service.

    Re-uploading identical content returns the stored version; different
    content for an existing version raises ImmutableVersion.
    """
    if not version or not version.strip():
        raise ValidationError("Version is required")
    role = _validate_role(role)

    existing = await _find_version(db, name, version, role)
    if existing is not None:
        if _same_content(existing, spec, git_sha, package_json):
            return existing
        raise ImmutableVersion(
            f"{name}@{version} ({role}) already exists with different content",
            detail="Service versions are immutable; publish a new version instead",
        )

    service = await ensure_service(db, name, role, spec_type=spec_type)
    await db.execute(
        conflict_free_insert(db, ServiceVersion).values(
            id=str(uuid.uuid4()),
            service_id=service.id,
            service_name=name,
            role=role,
            version=version,
            git_sha=git_sha,
            spec=spec,
            package_json=package_json,
            created_by=created_by,
        )
    )
    stored = await _find_version(db, name, version, role)
    if not _same_content(stored, spec, git_sha, package_json):
        # A concurrent upload of the same version won with other content.
        await db.rollback()
        raise ImmutableVersion(f"{name}@{version} ({role}) already exists with different content")

    await db.commit()
    logger.info("Uploaded %s@%s (%s)", name, version, role)
    return stored


async def get_version(
    db: AsyncSession, name: str, version: str, role: str | None = None
) -> ServiceVersion:
    if role:
        role = _validate_role(role)
    found = await _find_version(db, name, version, role)
    if found is None:
        raise NotFound(f"Service version not found: {name}@{version}")
    return found


async def list_versions(db: AsyncSession, name: str) -> list[ServiceVersion]:
    await get_service(db, name)
    result = await db.execute(
        select(ServiceVersion)
        .where(ServiceVersion.service_name == name)
        .order_by(ServiceVersion.created_at.desc())
    )
    return list(result.scalars().all())
