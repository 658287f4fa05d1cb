"""In-process event bus linking the aggregator and ledger to the coordinator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Type

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractUpdated:
    contract_id: str
    consumer: str
    consumer_version: str
    provider: str


@dataclass(frozen=True)
class DeploymentRecorded:
    deployment_id: str
    service: str
    version: str
    environment: str


EventHandler = Callable[[AsyncSession, object], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: Dict[type, List[EventHandler]] = {}

    def subscribe(self, event_type: Type, handler: EventHandler) -> None:
        handlers = self._subscribers.setdefault(event_type, [])
        handlers.append(handler)

    async def publish(self, db: AsyncSession, event: object) -> None:
        handlers = self._subscribers.get(type(event), [])
        logger.debug("Publishing %s to %d handler(s)", type(event).__name__, len(handlers))
        for handler in handlers:
            await handler(db, event)


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Return the process-wide bus with the coordinator subscribed."""
    global _event_bus
    if _event_bus is None:
        from broker import coordinator

        bus = EventBus()
        bus.subscribe(ContractUpdated, coordinator.handle_contract_updated)
        bus.subscribe(DeploymentRecorded, coordinator.handle_deployment_recorded)
        _event_bus = bus
    return _event_bus
