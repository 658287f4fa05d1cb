"""Dependency graph endpoints derived from contracts."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from broker import directory
from broker.dependency_graph import build_dependency_graph
from src.database import get_db
from src.schemas.deployments import DependencyGraphResponse, DependencyResponse

router = APIRouter(prefix="/dependencies", tags=["dependencies"])


@router.get("/graph", response_model=DependencyGraphResponse)
async def dependency_graph(db: AsyncSession = Depends(get_db)):
    """Dependencies per service and the deployment waves; 409 on a cycle."""
    graph = await build_dependency_graph(db)
    return DependencyGraphResponse(services=graph.to_dict(), waves=graph.topological_sort())


@router.get("/{service}", response_model=DependencyResponse)
async def service_dependencies(service: str, db: AsyncSession = Depends(get_db)):
    await directory.get_service(db, service)
    graph = await build_dependency_graph(db)
    return DependencyResponse(
        service=service,
        depends_on=graph.get_dependencies(service),
        dependents=graph.get_dependents(service),
        affected=graph.get_affected_services([service]),
    )
