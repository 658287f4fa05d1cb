"""Tests for the HTTP API using SQLite in-memory."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.database import get_db
from src.main import app

API = "/api/v1"


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _interaction(client, consumer="web-app", version="1.0.0", operation="GET /users/{id}"):
    resp = await client.post(f"{API}/interactions", json={
        "provider": "user-service",
        "consumer": consumer,
        "consumer_version": version,
        "operation": operation,
        "request": {"method": "GET", "path": "/users/1"},
        "response": {"status": 200, "body": {"id": 1}},
    })
    assert resp.status_code == 201
    return resp.json()["contract_id"]


async def _deploy(client, service, version, environment="staging", role="provider"):
    resp = await client.post(f"{API}/services/{service}/versions", json={
        "role": role, "version": version, "created_by": "ci",
    })
    assert resp.status_code == 201
    resp = await client.post(f"{API}/deployments", json={
        "service": service, "version": version, "environment": environment, "deployed_by": "ci",
    })
    assert resp.status_code == 201
    return resp.json()


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["service"] == "contract-broker"


class TestServices:
    @pytest.mark.asyncio
    async def test_register_and_get(self, client):
        resp = await client.post(f"{API}/services", json={"name": "user-service", "role": "provider"})
        assert resp.status_code == 201
        assert resp.json()["roles"] == ["provider"]

        resp = await client.get(f"{API}/services/user-service")
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_service_is_404(self, client):
        resp = await client.get(f"{API}/services/ghost")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NotFound"

    @pytest.mark.asyncio
    async def test_immutable_version_is_409(self, client):
        url = f"{API}/services/user-service/versions"
        first = await client.post(url, json={"role": "provider", "version": "1.0.0", "spec": {"a": 1}})
        assert first.status_code == 201
        second = await client.post(url, json={"role": "provider", "version": "1.0.0", "spec": {"a": 2}})
        assert second.status_code == 409
        assert second.json()["error"] == "ImmutableVersion"


class TestInteractionsAndContracts:
    @pytest.mark.asyncio
    async def test_record_and_list(self, client):
        contract_id = await _interaction(client)
        await _interaction(client)
        resp = await client.get(f"{API}/contracts/{contract_id}")
        assert resp.status_code == 200
        assert resp.json()["interaction_count"] == 2

        resp = await client.get(f"{API}/contracts/{contract_id}/interactions")
        assert len(resp.json()) == 2

    @pytest.mark.asyncio
    async def test_missing_status_is_400(self, client):
        resp = await client.post(f"{API}/interactions", json={
            "provider": "user-service",
            "consumer": "web-app",
            "consumer_version": "1.0.0",
            "operation": "GET /users",
            "request": {"method": "GET"},
            "response": {},
        })
        assert resp.status_code == 400
        assert resp.json()["error"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_patch_status_and_rebuild(self, client):
        contract_id = await _interaction(client)
        resp = await client.patch(f"{API}/contracts/{contract_id}", json={"status": "deprecated"})
        assert resp.json()["status"] == "deprecated"

        resp = await client.post(f"{API}/contracts/rebuild")
        assert resp.json() == {"contracts": 1, "corrected": 0}

        resp = await client.get(f"{API}/contracts/stale")
        assert resp.status_code == 200
        assert resp.json() == []


class TestVerificationFlow:
    @pytest.mark.asyncio
    async def test_end_to_end_can_i_deploy(self, client):
        await _interaction(client)
        await _deploy(client, "user-service", "2.0.0")

        params = {"service": "web-app", "version": "1.0.0", "role": "consumer", "environment": "staging"}
        resp = await client.get(f"{API}/can-i-deploy", params=params)
        assert resp.status_code == 200
        assert resp.json()["allowed"] is False
        assert resp.json()["reason"] == "not verified"

        tasks = (await client.get(f"{API}/verification/tasks", params={"provider": "user-service"})).json()
        assert len(tasks) == 1
        task = tasks[0]
        outcomes = [{"interaction_id": i["id"], "success": True} for i in task["interactions"]]

        resp = await client.post(
            f"{API}/verification/tasks/{task['id']}/results",
            json={"outcomes": outcomes, "provider_version": "2.0.0"},
        )
        assert resp.status_code == 201
        assert resp.json()["summary"] == {"passed": 1, "failed": 0, "total": 1}
        assert resp.json()["succeeded"] is True

        resp = await client.get(f"{API}/can-i-deploy", params=params)
        assert resp.json()["allowed"] is True

        matrix = (await client.get(f"{API}/verification/matrix")).json()
        assert matrix[0]["status"] == "passed"

    @pytest.mark.asyncio
    async def test_closed_task_is_404(self, client):
        await _interaction(client)
        await _deploy(client, "user-service", "2.0.0")
        [task] = (await client.get(f"{API}/verification/tasks")).json()
        body = {"outcomes": [{"interaction_id": task["interactions"][0]["id"], "success": True}]}

        first = await client.post(f"{API}/verification/tasks/{task['id']}/results", json=body)
        assert first.status_code == 201
        second = await client.post(f"{API}/verification/tasks/{task['id']}/results", json=body)
        assert second.status_code == 404

    @pytest.mark.asyncio
    async def test_greenfield_can_i_deploy(self, client):
        resp = await client.get(f"{API}/can-i-deploy", params={
            "service": "consumer-a", "version": "1.0.0", "role": "consumer", "environment": "staging",
        })
        assert resp.status_code == 200
        assert resp.json() == {
            "allowed": True,
            "reason": "no contracts to verify",
            "message": "consumer-a has no consumer contracts",
            "service": "consumer-a",
            "version": "1.0.0",
            "role": "consumer",
            "environment": "staging",
            "providers": [],
            "consumers": [],
            "issues": [],
        }


class TestDeployments:
    @pytest.mark.asyncio
    async def test_active_and_history(self, client):
        await _deploy(client, "user-service", "1.0.0", environment="production")
        await _deploy(client, "user-service", "1.1.0", environment="production")

        active = (await client.get(f"{API}/deployments/active", params={"environment": "production"})).json()
        assert [d["version"] for d in active] == ["1.1.0"]

        history = (await client.get(f"{API}/deployments/user-service/history")).json()
        assert {d["version"]: d["active"] for d in history} == {"1.1.0": True, "1.0.0": False}

        envs = (await client.get(f"{API}/deployments/environments")).json()
        assert envs == ["production"]

    @pytest.mark.asyncio
    async def test_unknown_version_is_404(self, client):
        await client.post(f"{API}/services", json={"name": "user-service", "role": "provider"})
        resp = await client.post(f"{API}/deployments", json={
            "service": "user-service", "version": "9.9.9", "environment": "staging",
        })
        assert resp.status_code == 404


class TestFixtures:
    async def _propose(self, client):
        await client.post(f"{API}/services", json={"name": "user-service", "role": "provider"})
        resp = await client.post(f"{API}/fixtures", json={
            "source": "provider",
            "service": "user-service",
            "service_versions": ["1.0.0"],
            "operation": "GET /users/{id}",
            "data": {"request": {"method": "GET"}, "response": {"status": 200}},
        })
        assert resp.status_code == 201
        return resp.json()

    @pytest.mark.asyncio
    async def test_invalid_transition_is_409(self, client):
        fixture = await self._propose(client)
        resp = await client.post(f"{API}/fixtures/{fixture['id']}/revoke", json={"actor": "bob"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "InvalidTransition"

        resp = await client.patch(
            f"{API}/fixtures/{fixture['id']}", json={"status": "draft", "actor": "bob"}
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_approve_and_mock_selection(self, client):
        fixture = await self._propose(client)
        resp = await client.post(f"{API}/fixtures/{fixture['id']}/approve", json={"actor": "bob"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"

        mock = await client.get(f"{API}/fixtures/mock", params={
            "service": "user-service", "service_version": "1.0.0", "operation": "GET /users/{id}",
        })
        assert [f["id"] for f in mock.json()] == [fixture["id"]]

        history = (await client.get(f"{API}/fixtures/{fixture['id']}/history")).json()
        assert [h["new_status"] for h in history] == ["draft", "approved"]

    @pytest.mark.asyncio
    async def test_approve_all_report(self, client):
        fixture = await self._propose(client)
        resp = await client.post(f"{API}/fixtures/approve-all", json={
            "approved_by": "bob", "fixture_ids": [fixture["id"], "missing"],
        })
        assert resp.status_code == 200
        assert [item["ok"] for item in resp.json()] == [True, False]


class TestDependencies:
    @pytest.mark.asyncio
    async def test_graph(self, client):
        await _interaction(client)
        resp = await client.get(f"{API}/dependencies/graph")
        assert resp.json()["waves"] == [["user-service"], ["web-app"]]

        resp = await client.get(f"{API}/dependencies/user-service")
        assert resp.json()["dependents"] == ["web-app"]

    @pytest.mark.asyncio
    async def test_cycle_is_409(self, client):
        await _interaction(client, consumer="order-service")
        resp = await client.post(f"{API}/interactions", json={
            "provider": "order-service",
            "consumer": "user-service",
            "consumer_version": "1.0.0",
            "operation": "GET /orders",
            "request": {"method": "GET", "path": "/orders"},
            "response": {"status": 200},
        })
        assert resp.status_code == 201

        resp = await client.get(f"{API}/dependencies/graph")
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "CircularDependency"
        assert body["retryable"] is False
        assert "order-service" in body["message"]
