"""Tests für die mehrstufige Kampagnen-Zuordnung von Anruf-Logs."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select, text

from app.models.call_record import CallRecord
from app.models.campaign import Campaign, CampaignLine
from app.models.sync_metadata import SyncStatus
from app.services.call_reconciler import CallRecordReconciler
from app.services.campaign_reconciler import CampaignReconciler
from app.services.campaign_resolver import INCOMING_CALL_LABEL, CampaignResolver
from tests.conftest import (
    OTHER_OWNER,
    OWNER,
    AgentFactory,
    CallRecordFactory,
    CampaignFactory,
    persist,
)

SYSTEM_NUMBER = "+917948516111"
CUSTOMER = "+919876543210"

TIER_METHODS = (
    "_by_denormalized_name",
    "match_call_request",
    "_by_destination_and_agent",
    "_by_destination",
    "_by_inbound_source",
)


@pytest.fixture
def resolver(db_session) -> CampaignResolver:
    return CampaignResolver(db_session, system_numbers=[SYSTEM_NUMBER])


async def _campaign(db, name, to_number=CUSTOMER, agent=None, remote_call_id=None, age_days=0, owner_id=OWNER):
    campaign = CampaignFactory.create(
        remote_id=f"c-{name}",
        owner_id=owner_id,
        name=name,
        agent_id=agent.id if agent else None,
        created_at=datetime.now(timezone.utc) - timedelta(days=age_days),
    )
    await persist(db, campaign)
    await persist(db, CampaignFactory.line(campaign, to_number, remote_call_id))
    return campaign


class TestResolutionTiers:
    """Reihenfolge der Stufen, erste mit Treffer gewinnt."""

    @pytest.mark.asyncio
    async def test_denormalized_name_wins(self, db_session, resolver):
        await _campaign(db_session, "Andere")
        call = CallRecordFactory.create(campaign_name="Aus dem Payload")
        await persist(db_session, call)

        resolution = await resolver.resolve(call)
        assert resolution.name == "Aus dem Payload"
        assert resolution.tier == "denormalized"

    @pytest.mark.asyncio
    async def test_call_request_id(self, db_session, resolver):
        campaign = await _campaign(db_session, "Herbst", to_number="+910000000000", remote_call_id="cr_9")
        call = CallRecordFactory.create(call_request_id="cr_9")
        await persist(db_session, call)

        resolution = await resolver.resolve(call)
        assert resolution.name == "Herbst"
        assert resolution.campaign_id == campaign.id
        assert resolution.tier == "call_request_id"

    @pytest.mark.asyncio
    async def test_destination_and_agent_before_destination(self, db_session, resolver):
        """Gleicher Agent schlägt eine neuere Kampagne ohne Agent."""
        agent = AgentFactory.create()
        await persist(db_session, agent)
        await _campaign(db_session, "Mit Agent", agent=agent, age_days=5)
        await _campaign(db_session, "Neuer ohne Agent", age_days=0)
        call = CallRecordFactory.create(agent_id=agent.id)
        await persist(db_session, call)

        resolution = await resolver.resolve(call)
        assert resolution.name == "Mit Agent"
        assert resolution.tier == "destination_and_agent"

    @pytest.mark.asyncio
    async def test_destination_newest_campaign(self, db_session, resolver):
        await _campaign(db_session, "Alt", age_days=10)
        await _campaign(db_session, "Neu", age_days=1)
        call = CallRecordFactory.create(to_number="98765 43210")
        await persist(db_session, call)

        resolution = await resolver.resolve(call)
        assert resolution.name == "Neu"
        assert resolution.tier == "destination"

    @pytest.mark.asyncio
    async def test_other_owner_campaign_ignored(self, db_session, resolver):
        await _campaign(db_session, "Fremd", owner_id=OTHER_OWNER)
        call = CallRecordFactory.create()
        await persist(db_session, call)

        assert (await resolver.resolve(call)).name == INCOMING_CALL_LABEL

    @pytest.mark.asyncio
    async def test_inbound_source(self, db_session, resolver):
        """Quelle ist keine eigene System-Nummer → eingehender Anruf."""
        call = CallRecordFactory.create(source="+14155550100", to_number=SYSTEM_NUMBER)
        await persist(db_session, call)

        resolution = await resolver.resolve(call)
        assert resolution.name == INCOMING_CALL_LABEL
        assert resolution.tier == "incoming"

    @pytest.mark.asyncio
    async def test_default(self, db_session, resolver):
        call = CallRecordFactory.create(source=SYSTEM_NUMBER)
        await persist(db_session, call)

        resolution = await resolver.resolve(call)
        assert resolution.name == INCOMING_CALL_LABEL
        assert resolution.tier == "default"
        assert not resolution.is_campaign


class TestTierIsolation:
    """Eine werfende Stufe bricht die Zuordnung nie ab."""

    @pytest.mark.asyncio
    async def test_all_tiers_raise(self, db_session, resolver):
        call = CallRecordFactory.create(campaign_name="egal")
        for name in TIER_METHODS:
            setattr(resolver, name, AsyncMock(side_effect=RuntimeError("Stufe kaputt")))

        resolution = await resolver.resolve(call)
        assert resolution.name == INCOMING_CALL_LABEL

    @pytest.mark.asyncio
    async def test_next_tier_after_failure(self, db_session, resolver):
        await _campaign(db_session, "Fallback")
        call = CallRecordFactory.create()
        await persist(db_session, call)
        resolver.match_call_request = AsyncMock(side_effect=RuntimeError("DB weg"))

        assert (await resolver.resolve(call)).name == "Fallback"


class TestCampaignAssignmentOnImport:
    """Zuordnung beim Import von Anruf-Logs."""

    @pytest.mark.asyncio
    async def test_campaign_id_set_on_import(self, db_session, broadcaster):
        campaign = await _campaign(db_session, "Import", remote_call_id="cr_1")
        await CallRecordReconciler(db_session, broadcaster).reconcile(
            [{"id": "501", "to_number": CUSTOMER, "call_request_id": "cr_1"}], OWNER
        )
        _, data = broadcaster.events[-1]
        assert data["campaign_id"] == str(campaign.id)
        assert data["campaign_name"] == "Import"

    @pytest.mark.asyncio
    async def test_conflicting_names_marked_pending(self, db_session, broadcaster):
        """Payload-Name und Call-Request-Zuordnung widersprechen sich → pending."""
        await _campaign(db_session, "Laut Zeile", remote_call_id="cr_1")
        await CallRecordReconciler(db_session, broadcaster).reconcile(
            [
                {
                    "id": "501",
                    "to_number": CUSTOMER,
                    "call_request_id": "cr_1",
                    "bulk_call_name": "Laut Payload",
                }
            ],
            OWNER,
        )
        _, data = broadcaster.events[-1]
        assert data["sync_status"] == SyncStatus.PENDING.value
        assert data["campaign_name"] == "Laut Payload"

    @pytest.mark.asyncio
    async def test_failing_queries_do_not_lose_the_call(self, db_session, broadcaster):
        """Ein fehlerhaftes SQL-Statement in jeder Stufe: der Anruf wird trotzdem gespeichert."""
        resolver = CampaignResolver(db_session, system_numbers=[SYSTEM_NUMBER])

        async def broken_query(call):
            await db_session.execute(text("SELECT name FROM nicht_vorhanden"))

        for name in TIER_METHODS:
            setattr(resolver, name, AsyncMock(side_effect=broken_query))

        result = await CallRecordReconciler(db_session, broadcaster, campaign_resolver=resolver).reconcile(
            [{"id": "501", "to_number": CUSTOMER, "call_request_id": "cr_1"}], OWNER
        )

        assert result.created == 1
        assert result.failed == 0
        stored = (await db_session.execute(select(CallRecord).where(CallRecord.remote_id == "501"))).scalar_one()
        assert stored.call_request_id == "cr_1"
        _, data = broadcaster.events[-1]
        assert data["campaign_name"] == INCOMING_CALL_LABEL


class TestRetriesToSameNumber:
    """Mehrere Versuche an dieselbe Nummer bleiben eigene Zeilen."""

    @pytest.mark.asyncio
    async def test_first_attempt_keeps_its_campaign(self, db_session, broadcaster, resolver):
        await CampaignReconciler(db_session, broadcaster).reconcile(
            [
                {
                    "id": "401",
                    "name": "Retry",
                    "call_lines": [
                        {"to_number": CUSTOMER, "call_request_id": "cr_1"},
                        {"to_number": CUSTOMER, "call_request_id": "cr_2"},
                    ],
                }
            ],
            OWNER,
        )
        retry = (await db_session.execute(select(Campaign).where(Campaign.name == "Retry"))).scalar_one()
        retry.created_at = datetime.now(timezone.utc) - timedelta(days=3)
        await db_session.commit()
        await _campaign(db_session, "Newer", remote_call_id="cr_3")

        lines = (
            await db_session.execute(select(CampaignLine).where(CampaignLine.campaign_id == retry.id))
        ).scalars().all()
        assert sorted(line.remote_call_id for line in lines) == ["cr_1", "cr_2"]

        call = CallRecordFactory.create(call_request_id="cr_1")
        await persist(db_session, call)
        resolution = await resolver.resolve(call)
        assert resolution.name == "Retry"
        assert resolution.tier == "call_request_id"


class TestLinkingCallsToLines:
    """Importierte Anruf-Logs tragen ihre Call-Request-ID in die Kampagnen-Zeile ein."""

    @pytest.mark.asyncio
    async def test_contact_line_gets_call_request_id(self, db_session, broadcaster, resolver):
        contacts = await _campaign(db_session, "Kontakte", age_days=2)
        await CallRecordReconciler(db_session, broadcaster).reconcile(
            [
                {
                    "id": "501",
                    "to_number": CUSTOMER,
                    "call_request_id": {"id": "cr_7"},
                    "call_status": "completed",
                    "call_duration_in_seconds": 42,
                }
            ],
            OWNER,
        )

        line = (
            await db_session.execute(select(CampaignLine).where(CampaignLine.campaign_id == contacts.id))
        ).scalar_one()
        assert line.remote_call_id == "cr_7"
        assert line.call_status == "completed"
        assert line.duration == 42

        # Eine spätere Kampagne an dieselbe Nummer ändert die Zuordnung nicht mehr
        await _campaign(db_session, "Später")
        call = (await db_session.execute(select(CallRecord).where(CallRecord.remote_id == "501"))).scalar_one()
        resolution = await resolver.resolve(call)
        assert resolution.name == "Kontakte"
        assert resolution.tier == "call_request_id"

    @pytest.mark.asyncio
    async def test_other_bot_not_linked(self, db_session, broadcaster):
        campaign = await _campaign(db_session, "Vertrieb")
        campaign.bot_name = "Sales Bot"
        await db_session.commit()

        await CallRecordReconciler(db_session, broadcaster).reconcile(
            [{"id": "501", "to_number": CUSTOMER, "call_request_id": "cr_8", "bot_name": "Support Bot"}],
            OWNER,
        )

        line = (
            await db_session.execute(select(CampaignLine).where(CampaignLine.campaign_id == campaign.id))
        ).scalar_one()
        assert line.remote_call_id is None

    @pytest.mark.asyncio
    async def test_known_call_request_id_not_relinked(self, db_session, broadcaster):
        """Ist die ID schon einer Zeile zugeordnet, entsteht keine zweite."""
        await _campaign(db_session, "Erste", remote_call_id="cr_1", age_days=5)
        await _campaign(db_session, "Zweite")

        await CallRecordReconciler(db_session, broadcaster).reconcile(
            [{"id": "501", "to_number": CUSTOMER, "call_request_id": "cr_1"}], OWNER
        )

        lines = (
            await db_session.execute(select(CampaignLine).where(CampaignLine.remote_call_id == "cr_1"))
        ).scalars().all()
        assert len(lines) == 1
        _, data = broadcaster.events[-1]
        assert data["campaign_name"] == "Erste"
