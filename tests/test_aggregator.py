"""Tests for the contract aggregator."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from broker import aggregator, directory
from broker.events import EventBus
from src.database import Base
from src.entities.contract import Contract
from src.entities.interaction import Interaction
from src.errors import NotFound, ValidationError


def _ago(**kwargs) -> datetime:
    return datetime.now(timezone.utc) - timedelta(**kwargs)


class TestRecordInteraction:
    @pytest.mark.asyncio
    async def test_creates_contract(self, db, record):
        contract_id = await record()
        contract = await aggregator.get_contract(db, contract_id)
        assert contract.consumer_name == "web-app"
        assert contract.provider_name == "user-service"
        assert contract.consumer_version == "1.0.0"
        assert contract.interaction_count == 1
        assert contract.status == "active"

    @pytest.mark.asyncio
    async def test_count_matches_number_of_calls(self, db, record):
        ids = {await record(operation=f"GET /users/{n}") for n in range(5)}
        assert len(ids) == 1
        contract = await aggregator.get_contract(db, ids.pop())
        assert contract.interaction_count == 5

    @pytest.mark.asyncio
    async def test_identical_resend_is_new_evidence(self, db, record):
        contract_id = await record()
        await record()
        interactions = await aggregator.list_contract_interactions(db, contract_id)
        assert len(interactions) == 2
        assert interactions[0].id != interactions[1].id

    @pytest.mark.asyncio
    async def test_versions_follow_newest_interaction(self, db, record):
        contract_id = await record(consumer_version="2.0.0", provider_version="5.0.0")
        # An older interaction arriving late does not roll the contract back
        await record(consumer_version="1.0.0", provider_version="4.0.0", timestamp=_ago(days=1))
        contract = await aggregator.get_contract(db, contract_id)
        assert contract.consumer_version == "2.0.0"
        assert contract.provider_version == "5.0.0"
        assert contract.interaction_count == 2

    @pytest.mark.asyncio
    async def test_late_interaction_moves_first_seen_back(self, db, record):
        contract_id = await record()
        await record(timestamp=_ago(days=3))

        def rollup(c):
            return (c.interaction_count, c.first_seen, c.last_seen, c.consumer_version)

        incremental = rollup(await aggregator.get_contract(db, contract_id))
        oldest = await db.execute(
            select(func.min(Interaction.timestamp)).where(Interaction.contract_id == contract_id)
        )
        assert incremental[1] == oldest.scalar()

        await aggregator.rebuild_contracts(db)
        assert rollup(await aggregator.get_contract(db, contract_id)) == incremental

    @pytest.mark.asyncio
    async def test_registers_both_endpoints(self, db, record):
        await record(consumer="order-service", provider="user-service")
        await record(consumer="web-app", provider="order-service")
        order = await directory.get_service(db, "order-service")
        assert order.roles == ["consumer", "provider"]
        version = await directory.get_version(db, "order-service", "1.0.0", role="consumer")
        assert version.created_by == "interaction-recorder"

    @pytest.mark.asyncio
    async def test_environment_defaults_to_test(self, db, record):
        contract_id = await record()
        [interaction] = await aggregator.list_contract_interactions(db, contract_id)
        assert interaction.environment == "test"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["provider", "consumer", "consumer_version", "operation"])
    async def test_missing_required_field(self, db, field):
        payload = {
            "provider": "user-service",
            "consumer": "web-app",
            "consumer_version": "1.0.0",
            "operation": "GET /users",
            "request": {"method": "GET", "path": "/users"},
            "response": {"status": 200},
        }
        payload[field] = ""
        with pytest.raises(ValidationError):
            await aggregator.record_interaction(db, payload)

    @pytest.mark.asyncio
    async def test_missing_response_status(self, db):
        with pytest.raises(ValidationError) as exc:
            await aggregator.record_interaction(db, {
                "provider": "user-service",
                "consumer": "web-app",
                "consumer_version": "1.0.0",
                "operation": "GET /users",
                "request": {"method": "GET", "path": "/users"},
                "response": {"body": []},
            })
        assert "response.status" in exc.value.detail
        count = await db.execute(select(func.count(Interaction.id)))
        assert count.scalar() == 0


class TestContractQueries:
    @pytest.mark.asyncio
    async def test_list_contracts_filters(self, db, record):
        await record(consumer="web-app", provider="user-service")
        await record(consumer="mobile-app", provider="user-service")
        await record(consumer="web-app", provider="order-service")
        assert len(await aggregator.list_contracts(db, provider="user-service")) == 2
        assert len(await aggregator.list_contracts(db, consumer="web-app")) == 2

    @pytest.mark.asyncio
    async def test_get_unknown_contract(self, db):
        with pytest.raises(NotFound):
            await aggregator.get_contract(db, "missing")

    @pytest.mark.asyncio
    async def test_set_status(self, db, record):
        contract_id = await record()
        contract = await aggregator.set_contract_status(db, contract_id, "deprecated")
        assert contract.status == "deprecated"

    @pytest.mark.asyncio
    async def test_set_invalid_status(self, db, record):
        contract_id = await record()
        with pytest.raises(ValidationError):
            await aggregator.set_contract_status(db, contract_id, "deleted")

    @pytest.mark.asyncio
    async def test_propose_archival_only_lists(self, db, record):
        stale_id = await record(consumer="legacy-app", timestamp=_ago(days=120))
        await record(consumer="web-app")
        proposals = await aggregator.propose_archival(db, stale_days=90)
        assert [c.id for c in proposals] == [stale_id]
        contract = await aggregator.get_contract(db, stale_id)
        assert contract.status == "active"


class TestRebuildContracts:
    @pytest.mark.asyncio
    async def test_rebuild_restores_corrupted_count(self, db, record):
        contract_id = await record()
        await record()
        await record()
        await db.execute(
            update(Contract).where(Contract.id == contract_id).values(interaction_count=99)
        )
        await db.commit()

        summary = await aggregator.rebuild_contracts(db)
        assert summary == {"contracts": 1, "corrected": 1}
        contract = await aggregator.get_contract(db, contract_id)
        assert contract.interaction_count == 3

    @pytest.mark.asyncio
    async def test_rebuild_is_noop_when_consistent(self, db, record):
        await record()
        summary = await aggregator.rebuild_contracts(db)
        assert summary["corrected"] == 0


class TestConcurrentRecording:
    """Concurrent recorders against a file-backed database."""

    @pytest_asyncio.fixture
    async def file_sessions(self, tmp_path):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'broker.db'}",
            connect_args={"timeout": 30},
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_no_lost_increments(self, file_sessions):
        bus = EventBus()

        async def record_once(n):
            async with file_sessions() as session:
                return await aggregator.record_interaction(session, {
                    "consumer": "web-app",
                    "consumer_version": "1.0.0",
                    "provider": "user-service",
                    "operation": "GET /users/{id}",
                    "request": {"method": "GET", "path": f"/users/{n}"},
                    "response": {"status": 200},
                }, bus=bus)

        contract_ids = await asyncio.gather(*(record_once(n) for n in range(10)))
        assert len(set(contract_ids)) == 1

        async with file_sessions() as db:
            contract = await aggregator.get_contract(db, contract_ids[0])
            assert contract.interaction_count == 10
            stored = await db.execute(select(func.count(Interaction.id)))
            assert stored.scalar() == 10
