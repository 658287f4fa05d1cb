"""Tests for the fixture lifecycle."""

import pytest
import pytest_asyncio
from sqlalchemy import update

from broker import coordinator, directory, fixtures
from src.entities.fixture import Fixture
from src.errors import ConflictingState, InvalidTransition, NotFound, ValidationError

DATA = {"request": {"method": "GET", "path": "/users/1"}, "response": {"status": 200}}


@pytest_asyncio.fixture
async def draft(db):
    await directory.register_service(db, "user-service", "provider")
    return await fixtures.propose_fixture(
        db,
        source="consumer",
        service="user-service",
        service_versions=["1.0.0"],
        operation="GET /users/{id}",
        data=DATA,
        created_from={"type": "interaction", "id": "int-1"},
        actor="alice",
    )


class TestTransitionTable:
    @pytest.mark.parametrize("current,target,allowed", [
        ("draft", "approved", True),
        ("draft", "rejected", True),
        ("approved", "rejected", True),
        ("rejected", "approved", True),
        ("rejected", "draft", False),
        ("approved", "draft", False),
        ("draft", "draft", False),
        ("archived", "approved", False),
    ])
    def test_can_transition(self, current, target, allowed):
        assert fixtures.can_transition(current, target) is allowed


class TestPropose:
    @pytest.mark.asyncio
    async def test_draft_is_entry_state(self, draft):
        assert draft.status == "draft"
        assert draft.priority == 1
        assert draft.approved_by is None

    @pytest.mark.asyncio
    async def test_duplicates_are_allowed(self, db, draft):
        again = await fixtures.propose_fixture(
            db, "consumer", "user-service", "1.0.0", "GET /users/{id}", DATA
        )
        assert again.id != draft.id
        assert len(await fixtures.list_fixtures(db, service="user-service")) == 2

    @pytest.mark.asyncio
    async def test_requires_request_and_response(self, db, draft):
        with pytest.raises(ValidationError):
            await fixtures.propose_fixture(
                db, "consumer", "user-service", ["1.0.0"], "GET /users", {"request": {}}
            )

    @pytest.mark.asyncio
    async def test_requires_known_service(self, db):
        with pytest.raises(NotFound):
            await fixtures.propose_fixture(db, "provider", "ghost", ["1.0.0"], "GET /", DATA)

    @pytest.mark.asyncio
    async def test_invalid_source(self, db, draft):
        with pytest.raises(ValidationError):
            await fixtures.propose_fixture(db, "mock", "user-service", ["1.0.0"], "GET /", DATA)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_approve(self, db, draft):
        approved = await fixtures.approve(db, draft.id, "bob", notes="looks right")
        assert approved.status == "approved"
        assert approved.approved_by == "bob"
        assert approved.approved_at is not None
        assert approved.notes == "looks right"

    @pytest.mark.asyncio
    async def test_approve_then_revoke_then_draft_fails(self, db, draft):
        await fixtures.approve(db, draft.id, "bob")
        revoked = await fixtures.revoke(db, draft.id, "carol")
        assert revoked.status == "rejected"
        with pytest.raises(InvalidTransition) as exc:
            await fixtures.transition(db, draft.id, "draft", "carol")
        assert exc.value.current == "rejected"
        assert exc.value.target == "draft"

    @pytest.mark.asyncio
    async def test_rejected_can_be_reapproved(self, db, draft):
        await fixtures.reject(db, draft.id, "bob")
        approved = await fixtures.approve(db, draft.id, "carol")
        assert approved.status == "approved"
        assert approved.approved_by == "carol"

    @pytest.mark.asyncio
    async def test_reject_twice_is_noop(self, db, draft):
        await fixtures.reject(db, draft.id, "bob")
        again = await fixtures.reject(db, draft.id, "bob")
        assert again.status == "rejected"
        assert len(await fixtures.fixture_history(db, draft.id)) == 2

    @pytest.mark.asyncio
    async def test_revoke_rejected_is_noop(self, db, draft):
        await fixtures.reject(db, draft.id, "bob")
        assert (await fixtures.revoke(db, draft.id, "bob")).status == "rejected"

    @pytest.mark.asyncio
    async def test_revoke_draft_is_invalid(self, db, draft):
        with pytest.raises(InvalidTransition):
            await fixtures.revoke(db, draft.id, "bob")

    @pytest.mark.asyncio
    async def test_reject_approved_requires_revoke(self, db, draft):
        await fixtures.approve(db, draft.id, "bob")
        with pytest.raises(InvalidTransition):
            await fixtures.reject(db, draft.id, "bob")

    @pytest.mark.asyncio
    async def test_approve_twice_is_noop(self, db, draft):
        first = await fixtures.approve(db, draft.id, "bob")
        second = await fixtures.approve(db, draft.id, "carol")
        assert second.approved_by == "bob"
        assert second.approved_at == first.approved_at

    @pytest.mark.asyncio
    async def test_concurrent_change_is_detected(self, db, draft, monkeypatch):
        """Another operator rejects between our read and our write."""
        real_get = fixtures.get_fixture

        async def stale_read(session, fixture_id):
            fixture = await real_get(session, fixture_id)
            await session.execute(
                update(Fixture)
                .where(Fixture.id == fixture_id)
                .values(status="rejected")
                .execution_options(synchronize_session=False)
            )
            return fixture

        monkeypatch.setattr(fixtures, "get_fixture", stale_read)
        with pytest.raises(ConflictingState):
            await fixtures.approve(db, draft.id, "bob")

    @pytest.mark.asyncio
    async def test_unknown_fixture(self, db):
        with pytest.raises(NotFound):
            await fixtures.approve(db, "missing", "bob")

    @pytest.mark.asyncio
    async def test_audit_trail(self, db, draft):
        await fixtures.approve(db, draft.id, "bob")
        await fixtures.revoke(db, draft.id, "carol", notes="stale payload")
        history = await fixtures.fixture_history(db, draft.id)
        assert [(h.old_status, h.new_status, h.actor) for h in history] == [
            (None, "draft", "alice"),
            ("draft", "approved", "bob"),
            ("approved", "rejected", "carol"),
        ]
        assert history[-1].detail == "stale payload"


class TestApproveAll:
    @pytest.mark.asyncio
    async def test_partial_failure_does_not_roll_back(self, db, draft):
        second = await fixtures.propose_fixture(
            db, "consumer", "user-service", ["1.0.0"], "POST /users", DATA
        )
        report = await fixtures.approve_all(
            db, "bob", fixture_ids=[draft.id, "missing", second.id]
        )
        assert [r["ok"] for r in report] == [True, False, True]
        assert report[1]["error"] == "NotFound"
        assert (await fixtures.get_fixture(db, draft.id)).status == "approved"
        assert (await fixtures.get_fixture(db, second.id)).status == "approved"

    @pytest.mark.asyncio
    async def test_all_drafts_for_service(self, db, draft):
        rejected = await fixtures.propose_fixture(
            db, "consumer", "user-service", ["1.0.0"], "DELETE /users/{id}", DATA
        )
        await fixtures.reject(db, rejected.id, "bob")
        report = await fixtures.approve_all(db, "bob", service="user-service")
        assert [r["fixture_id"] for r in report] == [draft.id]
        assert (await fixtures.get_fixture(db, rejected.id)).status == "rejected"

    @pytest.mark.asyncio
    async def test_requires_ids_or_service(self, db):
        with pytest.raises(ValidationError):
            await fixtures.approve_all(db, "bob")


class TestSelectForMock:
    @pytest.mark.asyncio
    async def test_orders_approved_by_priority(self, db, draft):
        high = await fixtures.propose_fixture(
            db, "provider", "user-service", ["1.0.0", "1.1.0"], "GET /users/{id}", DATA, priority=5
        )
        other_version = await fixtures.propose_fixture(
            db, "provider", "user-service", ["2.0.0"], "GET /users/{id}", DATA, priority=9
        )
        unapproved = await fixtures.propose_fixture(
            db, "provider", "user-service", ["1.0.0"], "GET /users/{id}", DATA, priority=10
        )
        for fixture in (draft, high, other_version):
            await fixtures.approve(db, fixture.id, "bob")

        selected = await fixtures.select_for_mock(db, "user-service", "1.0.0", "GET /users/{id}")
        assert [f.id for f in selected] == [high.id, draft.id]
        assert unapproved.id not in [f.id for f in selected]


class TestProposeFromEvidence:
    @pytest.mark.asyncio
    async def test_from_interaction(self, db, record):
        await record(provider_version="1.0.0")
        [interaction] = await coordinator.collect_evidence(db, "web-app", "1.0.0", "user-service")
        fixture = await fixtures.propose_from_interaction(db, interaction["id"])
        assert fixture.source == "consumer"
        assert fixture.service == "user-service"
        assert fixture.service_versions == ["1.0.0"]
        assert fixture.created_from == {"type": "interaction", "id": interaction["id"]}

    @pytest.mark.asyncio
    async def test_from_interaction_without_provider_version(self, db, record):
        await record()
        [interaction] = await coordinator.collect_evidence(db, "web-app", "1.0.0", "user-service")
        with pytest.raises(ValidationError):
            await fixtures.propose_from_interaction(db, interaction["id"])

    @pytest.mark.asyncio
    async def test_from_verification_requires_passing_outcome(self, db, record, deploy):
        await deploy("user-service", "2.0.0")
        await record(operation="GET /users/{id}")
        await record(operation="POST /users")
        [task] = await coordinator.list_pending_tasks(db)
        passing, failing = task.interactions
        result = await coordinator.submit_verification_result(db, task.id, [
            {"interaction_id": passing["id"], "success": True,
             "actual_response": {"status": 200, "body": {"id": 7}}},
            {"interaction_id": failing["id"], "success": False},
        ])

        fixture = await fixtures.propose_from_verification(db, result.id, passing["id"])
        assert fixture.source == "provider"
        assert fixture.service_versions == ["2.0.0"]
        assert fixture.data["response"] == {"status": 200, "body": {"id": 7}}

        with pytest.raises(ValidationError):
            await fixtures.propose_from_verification(db, result.id, failing["id"])
