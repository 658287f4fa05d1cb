"""Service directory endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from broker import directory
from src.database import get_db
from src.schemas.services import ServiceCreate, ServiceResponse, VersionCreate, VersionResponse

router = APIRouter(prefix="/services", tags=["services"])


@router.post("", response_model=ServiceResponse, status_code=201)
async def register_service(body: ServiceCreate, db: AsyncSession = Depends(get_db)):
    """Register a service, or add a role to an existing one."""
    return await directory.register_service(
        db,
        body.name,
        body.role,
        spec_type=body.spec_type,
        description=body.description,
        git_repository_url=body.git_repository_url,
    )


@router.get("", response_model=list[ServiceResponse])
async def list_services(role: str | None = None, db: AsyncSession = Depends(get_db)):
    return await directory.list_services(db, role=role)


@router.get("/{name}", response_model=ServiceResponse)
async def get_service(name: str, db: AsyncSession = Depends(get_db)):
    return await directory.get_service(db, name)


@router.post("/{name}/versions", response_model=VersionResponse, status_code=201)
async def upload_spec(name: str, body: VersionCreate, db: AsyncSession = Depends(get_db)):
    """Publish an immutable version. Identical re-uploads return the stored version."""
    return await directory.upload_spec(
        db,
        name,
        body.role,
        body.version,
        spec=body.spec,
        git_sha=body.git_sha,
        package_json=body.package_json,
        created_by=body.created_by,
        spec_type=body.spec_type,
    )


@router.get("/{name}/versions", response_model=list[VersionResponse])
async def list_versions(name: str, db: AsyncSession = Depends(get_db)):
    return await directory.list_versions(db, name)
