"""Test-Konfiguration und Fixtures für das Voice-Dashboard."""

import uuid
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.dependencies import get_guard
from app.database import Base, get_db
from app.main import app
from app.models.agent import Agent
from app.models.call_record import CallRecord
from app.models.campaign import Campaign, CampaignLine
from app.models.knowledge_file import KnowledgeFile
from app.models.phone_number import PhoneNumber
from app.services.event_bus import ChangeBroadcaster
from app.services.field_normalizer import normalize_phone_number
from app.services.sync_guard import OutboundGuard

# In-Memory SQLite: eine Connection für alle Sessions eines Tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OWNER = "owner-a"
OTHER_OWNER = "owner-b"


@pytest.fixture
def anyio_backend():
    """Async Backend für Tests."""
    return "asyncio"


# ==================== FAKES ====================


class FakeOmniClient:
    """Plattform-Client ohne Netzwerk.

    `pages` bildet Endpoint auf eine Liste von Responses ab (Seite 1, 2, ...).
    Fehlende Seiten ergeben eine leere Liste. Alle Aufrufe landen in `calls`.
    Angelegte Datensätze bekommen `created_id` als Remote-ID (None: Antwort ohne ID).
    """

    def __init__(
        self,
        pages: dict[str, list[Any]] | None = None,
        fail: bool = False,
        created_id: int | None = 9001,
    ):
        self.pages = pages or {}
        self.fail = fail
        self.created_id = created_id
        self.calls: list[tuple] = []
        self.closed = False

    async def fetch_page(self, endpoint: str, pageno: int, pagesize: int, filters=None) -> Any:
        self.calls.append(("fetch_page", endpoint, pageno, pagesize, dict(filters or {})))
        responses = self.pages.get(endpoint, [])
        if pageno <= len(responses):
            return responses[pageno - 1]
        return []

    async def _mutation(self, name: str, *args) -> dict:
        self.calls.append((name, *args))
        if self.fail:
            raise RuntimeError("Plattform nicht erreichbar")
        return {"success": True}

    async def attach_phone_number(self, phone_number_id: int, agent_id: int) -> dict:
        return await self._mutation("attach_phone_number", phone_number_id, agent_id)

    async def detach_phone_number(self, phone_number_id: int) -> dict:
        return await self._mutation("detach_phone_number", phone_number_id)

    async def delete_phone_number(self, phone_number_id: int) -> dict:
        return await self._mutation("delete_phone_number", phone_number_id)

    async def attach_files(self, file_ids: list[int], agent_id: int) -> dict:
        return await self._mutation("attach_files", file_ids, agent_id)

    async def detach_files(self, file_ids: list[int], agent_id: int) -> dict:
        return await self._mutation("detach_files", file_ids, agent_id)

    async def delete_file(self, file_id: int) -> dict:
        return await self._mutation("delete_file", file_id)

    async def create_agent(self, payload: dict) -> dict:
        await self._mutation("create_agent", payload)
        if self.created_id is None:
            return {"success": True}
        return {"id": self.created_id, "name": payload["name"], "bot_call_type": payload["call_type"]}

    async def update_agent(self, agent_id: int, payload: dict) -> dict:
        return await self._mutation("update_agent", agent_id, payload)

    async def delete_agent(self, agent_id: int) -> dict:
        return await self._mutation("delete_agent", agent_id)

    async def import_phone_number(self, provider: str, payload: dict) -> dict:
        await self._mutation("import_phone_number", provider, payload)
        if self.created_id is None:
            return {"success": True}
        return {"success": True, "data": {"phone_number_id": self.created_id}}

    async def close(self) -> None:
        self.closed = True

    @property
    def mutation_calls(self) -> list[tuple]:
        return [call for call in self.calls if call[0] != "fetch_page"]

    @property
    def fetch_calls(self) -> list[tuple]:
        return [call for call in self.calls if call[0] == "fetch_page"]


class RecordingBroadcaster(ChangeBroadcaster):
    """Event-Bus, der alle Events zusätzlich in einer Liste sammelt."""

    def __init__(self):
        super().__init__()
        self.events: list[tuple[str, dict]] = []

    async def publish(self, event_type: str, data: dict[str, Any]) -> int:
        self.events.append((event_type, data))
        return await super().publish(event_type, data)

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


# ==================== DATENBANK ====================


@pytest.fixture
async def engine():
    """Frische In-Memory-Datenbank pro Test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """Session-Factory wie in app.database, aber auf der Test-Engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Stellt eine Test-DB-Session bereit."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def omni_client() -> FakeOmniClient:
    return FakeOmniClient()


@pytest.fixture
async def client(
    db_session: AsyncSession,
    broadcaster: RecordingBroadcaster,
    omni_client: FakeOmniClient,
) -> AsyncGenerator[AsyncClient, None]:
    """Async Test-Client mit überschriebener DB- und Plattform-Dependency.

    Ohne Scheduler: Listen-Endpoints stoßen dann keinen Hintergrund-Sync an.
    """
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_guard] = lambda: OutboundGuard(omni_client)
    app.state.broadcaster = broadcaster
    app.state.scheduler = None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ==================== FACTORIES ====================


class AgentFactory:
    """Factory für Agent-Testdaten."""

    @staticmethod
    def create(
        remote_id: str = "101",
        owner_id: str = OWNER,
        name: str = "Support Bot",
        created_at: datetime | None = None,
    ) -> Agent:
        """Erstellt ein Agent-Objekt für Tests."""
        return Agent(
            id=uuid.uuid4(),
            owner_id=owner_id,
            remote_id=remote_id,
            name=name,
            llm="azure-gpt-4o-mini",
            voice="google",
            created_at=created_at or datetime.now(timezone.utc),
        )


class PhoneNumberFactory:
    """Factory für Rufnummern-Testdaten."""

    @staticmethod
    def create(
        remote_id: str = "201",
        owner_id: str = OWNER,
        number: str = "+917948516111",
        attached_agent_id: uuid.UUID | None = None,
    ) -> PhoneNumber:
        return PhoneNumber(
            id=uuid.uuid4(),
            owner_id=owner_id,
            remote_id=remote_id,
            number=number,
            attached_agent_id=attached_agent_id,
        )


class KnowledgeFileFactory:
    """Factory für Wissensdatenbank-Dateien."""

    @staticmethod
    def create(
        remote_id: str = "301",
        owner_id: str = OWNER,
        filename: str = "preisliste.pdf",
    ) -> KnowledgeFile:
        return KnowledgeFile(
            id=uuid.uuid4(),
            owner_id=owner_id,
            remote_id=remote_id,
            filename=filename,
            original_name=filename,
            mime_type="application/pdf",
        )


class CampaignFactory:
    """Factory für Kampagnen inkl. Anruf-Zeilen."""

    @staticmethod
    def create(
        remote_id: str = "401",
        owner_id: str = OWNER,
        name: str = "Sommer-Aktion",
        agent_id: uuid.UUID | None = None,
        created_at: datetime | None = None,
    ) -> Campaign:
        return Campaign(
            id=uuid.uuid4(),
            owner_id=owner_id,
            remote_id=remote_id,
            name=name,
            agent_id=agent_id,
            created_at=created_at or datetime.now(timezone.utc),
        )

    @staticmethod
    def line(
        campaign: Campaign,
        to_number: str = "+91 98765 43210",
        remote_call_id: str | None = None,
    ) -> CampaignLine:
        return CampaignLine(
            id=uuid.uuid4(),
            campaign_id=campaign.id,
            to_number=to_number,
            normalized_to=normalize_phone_number(to_number),
            remote_call_id=remote_call_id,
        )


class CallRecordFactory:
    """Factory für Anruf-Logs."""

    @staticmethod
    def create(
        remote_id: str = "501",
        owner_id: str = OWNER,
        source: str = "+917948516111",
        to_number: str = "+919876543210",
        status: str = "completed",
        duration: int = 60,
        cost: float = 0.5,
        call_time: datetime | None = None,
        agent_id: uuid.UUID | None = None,
        call_request_id: str | None = None,
        campaign_name: str | None = None,
    ) -> CallRecord:
        return CallRecord(
            id=uuid.uuid4(),
            owner_id=owner_id,
            remote_id=remote_id,
            source=source,
            to_number=to_number,
            normalized_source=normalize_phone_number(source),
            normalized_to=normalize_phone_number(to_number),
            status=status,
            duration=duration,
            cost=cost,
            call_time=call_time or datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
            agent_id=agent_id,
            call_request_id=call_request_id,
            campaign_name=campaign_name,
        )


async def persist(db: AsyncSession, *records) -> None:
    """Speichert Testdaten und committet."""
    for record in records:
        db.add(record)
    await db.commit()
