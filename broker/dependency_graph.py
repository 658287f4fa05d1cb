"""Service dependency graph derived from contracts, plus a topological sorter."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.entities.contract import Contract, ContractStatus
from src.entities.service import Service
from src.errors import CircularDependency


@dataclass
class ServiceNode:
    """Represents a service in the dependency graph."""
    name: str
    depends_on: List[str] = field(default_factory=list)  # providers this service consumes


class DependencyGraph:
    """Builds and analyzes consumer -> provider dependency graphs."""

    def __init__(self):
        self.nodes: Dict[str, ServiceNode] = {}

    def add_service(self, name: str, depends_on: List[str] = None):
        """Add a service to the graph, keeping any dependencies already known."""
        node = self.nodes.setdefault(name, ServiceNode(name=name))
        for dep in depends_on or []:
            self.add_dependency(name, dep)
        return node

    def add_dependency(self, consumer: str, provider: str):
        self.nodes.setdefault(provider, ServiceNode(name=provider))
        node = self.nodes.setdefault(consumer, ServiceNode(name=consumer))
        if provider not in node.depends_on:
            node.depends_on.append(provider)

    def get_dependencies(self, service: str) -> List[str]:
        node = self.nodes.get(service)
        return sorted(node.depends_on) if node else []

    def get_dependents(self, service: str) -> List[str]:
        return sorted(n.name for n in self.nodes.values() if service in n.depends_on)

    def topological_sort(self) -> List[List[str]]:
        """
        Return services grouped by deployment waves.

        Returns:
            List of waves, where each wave is a list of services whose
            providers all sit in earlier waves.

        Example:
            [
                ["user-service"],                  # Wave 0: consumes nothing
                ["order-service", "web-app"],      # Wave 1: consume user-service
                ["checkout-ui"],                   # Wave 2: consumes order-service
            ]
        """
        # Count unresolved providers for each node
        remaining = {
            name: len([d for d in node.depends_on if d in self.nodes])
            for name, node in self.nodes.items()
        }

        waves = []
        processed = set()

        while len(processed) < len(self.nodes):
            current_wave = [
                name for name, degree in remaining.items()
                if degree == 0 and name not in processed
            ]

            if not current_wave:
                # Circular dependency detected
                cycle = set(self.nodes.keys()) - processed
                raise CircularDependency(
                    f"Circular dependency detected in: {sorted(cycle)}",
                    detail="Services that consume each other have no deployment order",
                )

            waves.append(sorted(current_wave))
            processed.update(current_wave)

            # Resolve the providers deployed in this wave
            for service in current_wave:
                for dependent in self.get_dependents(service):
                    remaining[dependent] -= 1

        return waves

    def get_affected_services(
        self,
        changed_services: List[str]
    ) -> List[str]:
        """
        Find all services affected by changes to given services.

        Args:
            changed_services: Services that changed

        Returns:
            All services that consume (directly or indirectly) the changed services
        """
        affected = set()
        queue = list(changed_services)

        while queue:
            service = queue.pop(0)

            for node in self.nodes.values():
                if service in node.depends_on and node.name not in affected:
                    affected.add(node.name)
                    queue.append(node.name)

        return sorted(affected)

    def to_dict(self) -> dict:
        return {name: self.get_dependencies(name) for name in sorted(self.nodes)}


async def build_dependency_graph(db: AsyncSession) -> DependencyGraph:
    """Build the graph from every registered service and non-archived contract."""
    graph = DependencyGraph()

    services = await db.execute(select(Service.name))
    for name in services.scalars().all():
        graph.add_service(name)

    pairs = await db.execute(
        select(Contract.consumer_name, Contract.provider_name).where(
            Contract.status != ContractStatus.ARCHIVED.value
        )
    )
    for consumer, provider in pairs.all():
        # A service calling itself is not a deployment-order constraint.
        if consumer != provider:
            graph.add_dependency(consumer, provider)

    return graph
