"""Tests für API-Endpoints."""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.api.dependencies import get_guard
from app.main import app
from app.models.agent import Agent
from app.models.phone_number import PhoneNumber
from app.models.sync_metadata import SyncStatus
from app.services.sync_guard import OutboundGuard
from app.services.sync_scheduler import BackgroundSyncScheduler
from app.state import SyncStateStore
from tests.conftest import (
    OTHER_OWNER,
    OWNER,
    AgentFactory,
    CallRecordFactory,
    FakeOmniClient,
    KnowledgeFileFactory,
    PhoneNumberFactory,
    persist,
)

HEADERS = {"X-Owner-Id": OWNER}


class TestHealthEndpoint:
    """Tests für den Health-Check Endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        """Health-Check gibt 200 OK zurück."""
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["running_syncs"] == 0


class TestListEndpoints:
    """Listen kommen immer aus der lokalen DB, im Plattform-Envelope."""

    @pytest.mark.asyncio
    async def test_empty_agent_list(self, client: AsyncClient):
        response = await client.get("/api/agents", headers=HEADERS)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"] == []
        assert data["pagination"]["total"] == 0

    @pytest.mark.asyncio
    async def test_owner_isolation(self, client: AsyncClient, db_session):
        await persist(
            db_session,
            AgentFactory.create(remote_id="101", owner_id=OWNER),
            AgentFactory.create(remote_id="102", owner_id=OTHER_OWNER),
        )

        response = await client.get("/api/agents", headers=HEADERS)

        assert [a["remote_id"] for a in response.json()["data"]] == ["101"]

    @pytest.mark.asyncio
    async def test_pagination(self, client: AsyncClient, db_session):
        await persist(db_session, *[KnowledgeFileFactory.create(remote_id=str(300 + i)) for i in range(5)])

        response = await client.get("/api/knowledge_base/list?pageno=2&pagesize=2", headers=HEADERS)

        data = response.json()
        assert len(data["data"]) == 2
        assert data["pagination"] == {"pageno": 2, "pagesize": 2, "total": 5, "pages": 3}

    @pytest.mark.asyncio
    async def test_invalid_pagesize(self, client: AsyncClient):
        response = await client.get("/api/phone_number/list?pagesize=0", headers=HEADERS)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_call_logs_carry_campaign_name(self, client: AsyncClient, db_session):
        await persist(db_session, CallRecordFactory.create())

        response = await client.get("/api/calls/logs", headers=HEADERS)

        entry = response.json()["data"][0]
        assert entry["remote_id"] == "501"
        assert entry["campaign_name"] == "Incoming Call"

    @pytest.mark.asyncio
    async def test_call_stats(self, client: AsyncClient, db_session):
        await persist(
            db_session,
            CallRecordFactory.create(remote_id="1", status="completed", duration=60, cost=0.5),
            CallRecordFactory.create(remote_id="2", status="failed", duration=0, cost=0.0),
            CallRecordFactory.create(remote_id="3", owner_id=OTHER_OWNER, duration=999),
        )

        response = await client.get("/api/calls/stats", headers=HEADERS)

        assert response.status_code == 200
        stats = response.json()
        assert stats["total_calls"] == 2
        assert stats["completed_calls"] == 1
        assert stats["failed_calls"] == 1
        assert stats["total_duration"] == 60
        assert stats["average_duration"] == 30.0

    @pytest.mark.asyncio
    async def test_get_call_log_not_found(self, client: AsyncClient):
        response = await client.get(f"/api/calls/logs/{uuid.uuid4()}", headers=HEADERS)
        assert response.status_code == 404
        assert response.json()["error"] == "call_record_not_found"


class TestMutations:
    """Dashboard-Mutationen: lokal speichern, genau einmal weitergeben."""

    @pytest.mark.asyncio
    async def test_attach_unknown_phone_number(self, client: AsyncClient):
        response = await client.post(
            "/api/phone_number/attach", json={"phone_number_id": 999, "agent_id": 101}, headers=HEADERS
        )
        assert response.status_code == 404
        assert response.json()["error"] == "phone_number_not_found"

    @pytest.mark.asyncio
    async def test_attach_unknown_agent(self, client: AsyncClient, db_session):
        await persist(db_session, PhoneNumberFactory.create())
        response = await client.post(
            "/api/phone_number/attach", json={"phone_number_id": 201, "agent_id": 999}, headers=HEADERS
        )
        assert response.status_code == 404
        assert response.json()["error"] == "agent_not_found"

    @pytest.mark.asyncio
    async def test_attach_propagated(self, client: AsyncClient, db_session, omni_client, broadcaster):
        await persist(db_session, AgentFactory.create(), PhoneNumberFactory.create())

        response = await client.post(
            "/api/phone_number/attach", json={"phone_number_id": "201", "agent_id": "101"}, headers=HEADERS
        )

        assert response.status_code == 200
        body = response.json()
        assert body["propagation"] == "sent"
        assert body["data"]["remote_id"] == "201"
        assert omni_client.mutation_calls == [("attach_phone_number", 201, 101)]
        assert "phone_number_updated" in broadcaster.names()

    @pytest.mark.asyncio
    async def test_attach_failed_propagation(self, client: AsyncClient, db_session):
        """Plattform-Fehler: 200 mit propagation=failed und sync_status=error."""
        app.dependency_overrides[get_guard] = lambda: OutboundGuard(FakeOmniClient(fail=True))
        await persist(db_session, AgentFactory.create(), PhoneNumberFactory.create())

        response = await client.post(
            "/api/phone_number/attach", json={"phone_number_id": 201, "agent_id": 101}, headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json()["propagation"] == "failed"
        assert response.json()["data"]["sync_status"] == SyncStatus.ERROR.value

    @pytest.mark.asyncio
    async def test_file_attach_empty_list(self, client: AsyncClient):
        response = await client.post(
            "/api/knowledge_base/attach", json={"file_ids": [], "agent_id": 101}, headers=HEADERS
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_delete_call_log_local_only(self, client: AsyncClient, db_session, omni_client):
        await persist(db_session, CallRecordFactory.create())

        response = await client.delete("/api/calls/logs/501", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["propagation"] == "skipped"
        assert omni_client.mutation_calls == []


class TestAgentMutations:
    """Anlegen und Ändern: Plattform zuerst, dann lokal übernehmen."""

    NEW_AGENT = {
        "name": "Termin Bot",
        "description": "Vereinbart Termine",
        "use_case": "Appointments",
        "outgoing": False,
    }

    @pytest.mark.asyncio
    async def test_create_agent(self, client: AsyncClient, db_session, omni_client, broadcaster):
        response = await client.post("/api/agents", json=self.NEW_AGENT, headers=HEADERS)

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["remote_id"] == "9001"
        assert data["name"] == "Termin Bot"
        assert data["use_case"] == "Appointments"
        assert data["outgoing"] is False

        name, payload = omni_client.mutation_calls[0]
        assert name == "create_agent"
        assert payload["call_type"] == "Incoming"
        assert payload["context_breakdown"][1]["body"] == "Appointments"
        assert "agent_created" in broadcaster.names()

        stored = (await db_session.execute(select(Agent).where(Agent.owner_id == OWNER))).scalar_one()
        assert stored.remote_id == "9001"

    @pytest.mark.asyncio
    async def test_create_agent_platform_failure(self, client: AsyncClient, db_session):
        """Ohne Plattform-Agent kein lokaler Datensatz."""
        app.dependency_overrides[get_guard] = lambda: OutboundGuard(FakeOmniClient(fail=True))

        response = await client.post("/api/agents", json=self.NEW_AGENT, headers=HEADERS)

        assert response.status_code == 502
        assert response.json()["error"] == "omni_service_error"
        assert (await db_session.execute(select(Agent))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_create_agent_without_remote_id(self, client: AsyncClient, db_session):
        app.dependency_overrides[get_guard] = lambda: OutboundGuard(FakeOmniClient(created_id=None))

        response = await client.post("/api/agents", json=self.NEW_AGENT, headers=HEADERS)

        assert response.status_code == 502
        assert (await db_session.execute(select(Agent))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_create_agent_unknown_use_case(self, client: AsyncClient, omni_client):
        response = await client.post(
            "/api/agents", json={**self.NEW_AGENT, "use_case": "Karaoke"}, headers=HEADERS
        )
        assert response.status_code == 422
        assert omni_client.mutation_calls == []

    @pytest.mark.asyncio
    async def test_update_agent(self, client: AsyncClient, db_session, omni_client):
        await persist(db_session, AgentFactory.create())

        response = await client.put("/api/agents/101", json={"name": "Neuer Name"}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Neuer Name"
        assert omni_client.mutation_calls == [("update_agent", 101, {"name": "Neuer Name"})]

    @pytest.mark.asyncio
    async def test_update_agent_platform_failure(self, client: AsyncClient, db_session):
        """Lokal bleibt der alte Stand, wenn die Plattform die Änderung ablehnt."""
        app.dependency_overrides[get_guard] = lambda: OutboundGuard(FakeOmniClient(fail=True))
        agent = AgentFactory.create()
        await persist(db_session, agent)

        response = await client.put("/api/agents/101", json={"name": "Neuer Name"}, headers=HEADERS)

        assert response.status_code == 502
        assert agent.name == "Support Bot"

    @pytest.mark.asyncio
    async def test_update_unknown_agent(self, client: AsyncClient):
        response = await client.put("/api/agents/999", json={"name": "x"}, headers=HEADERS)
        assert response.status_code == 404
        assert response.json()["error"] == "agent_not_found"

    @pytest.mark.asyncio
    async def test_delete_agent(self, client: AsyncClient, db_session, omni_client, broadcaster):
        await persist(db_session, AgentFactory.create())

        response = await client.delete("/api/agents/101", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["propagation"] == "sent"
        assert omni_client.mutation_calls == [("delete_agent", 101)]
        assert "agent_deleted" in broadcaster.names()
        assert (await db_session.execute(select(Agent))).scalars().all() == []


class TestPhoneNumberImport:
    """Import von Anbieter-Nummern: Plattform zuerst, Remote-ID aus der Antwort."""

    @pytest.mark.asyncio
    async def test_import_twilio(self, client: AsyncClient, db_session, omni_client, broadcaster):
        response = await client.post(
            "/api/phone_number/import/twilio",
            json={"phone_number": "+14155550100", "account_sid": "AC123", "account_token": "geheim"},
            headers=HEADERS,
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["remote_id"] == "9001"
        assert data["provider"] == "TWILIO"
        assert data["country"] == "US"
        assert omni_client.mutation_calls == [
            (
                "import_phone_number",
                "twilio",
                {
                    "phone_number": "+14155550100",
                    "account_sid": "AC123",
                    "account_token": "geheim",
                    "name": "+14155550100",
                },
            )
        ]
        assert "phone_number_created" in broadcaster.names()

    @pytest.mark.asyncio
    async def test_import_exotel_missing_credentials(self, client: AsyncClient, omni_client):
        response = await client.post(
            "/api/phone_number/import/exotel",
            json={"exotel_phone_number": "+917948516222", "exotel_api_key": "k"},
            headers=HEADERS,
        )
        assert response.status_code == 422
        assert omni_client.mutation_calls == []

    @pytest.mark.asyncio
    async def test_import_existing_number(self, client: AsyncClient, db_session, omni_client):
        await persist(db_session, PhoneNumberFactory.create(number="+91 79485 16111"))

        response = await client.post(
            "/api/phone_number/import/exotel",
            json={
                "exotel_phone_number": "+917948516111",
                "exotel_api_key": "k",
                "exotel_api_token": "t",
                "exotel_subdomain": "api.exotel.com",
                "exotel_account_sid": "sid",
                "exotel_app_id": "app",
            },
            headers=HEADERS,
        )

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_entry"
        assert omni_client.mutation_calls == []

    @pytest.mark.asyncio
    async def test_import_platform_failure(self, client: AsyncClient, db_session):
        app.dependency_overrides[get_guard] = lambda: OutboundGuard(FakeOmniClient(fail=True))

        response = await client.post(
            "/api/phone_number/import/twilio",
            json={"phone_number": "+14155550100", "account_sid": "AC123", "account_token": "geheim"},
            headers=HEADERS,
        )

        assert response.status_code == 502
        assert (await db_session.execute(select(PhoneNumber))).scalars().all() == []


class TestWebhookEndpoint:
    """Ein Endpoint, Klassifizierung über die Payload-Form."""

    @pytest.mark.asyncio
    async def test_unroutable_payload(self, client: AsyncClient):
        response = await client.post("/api/webhook", json={"foo": "bar"})
        assert response.status_code == 400
        assert response.json()["error"] == "unroutable_webhook"

    @pytest.mark.asyncio
    async def test_invalid_json(self, client: AsyncClient):
        response = await client.post(
            "/api/webhook", content=b"{kaputt", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_platform_webhook_not_propagated(self, client: AsyncClient, db_session, omni_client):
        agent = AgentFactory.create()
        await persist(db_session, agent, PhoneNumberFactory.create())

        response = await client.post(
            "/api/webhook",
            json={"phone_number_id": 201, "agent_id": 101},
            headers={"x-source": "omnidimension"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["resource"] == "phone_number"
        assert body["mutation"] == "attach"
        assert body["result"]["propagation"] == "skipped"
        assert omni_client.mutation_calls == []

    @pytest.mark.asyncio
    async def test_webhook_creates_record(self, client: AsyncClient, db_session):
        response = await client.post(
            "/api/webhook",
            json={"file": {"id": 77, "name": "preise.pdf"}},
            headers={"x-source": "omnidimension"},
        )

        assert response.status_code == 200
        assert response.json()["result"]["created"] is True


class TestSyncEndpoints:
    @pytest.mark.asyncio
    async def test_no_scheduler(self, client: AsyncClient):
        response = await client.post("/api/sync/agent", headers=HEADERS)
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_unknown_resource(self, client: AsyncClient, session_factory):
        app.state.scheduler = BackgroundSyncScheduler(SyncStateStore(), session_factory, FakeOmniClient)

        response = await client.post("/api/sync/invoices", headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["error"] == "unknown_resource"

    @pytest.mark.asyncio
    async def test_status(self, client: AsyncClient, session_factory):
        app.state.scheduler = BackgroundSyncScheduler(SyncStateStore(), session_factory, FakeOmniClient)

        response = await client.get("/api/sync/status", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["success"] is True
