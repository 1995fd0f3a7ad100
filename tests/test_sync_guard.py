"""Tests für Herkunftserkennung und Outbound-Guard."""

import pytest

from app.config import Settings
from app.models.sync_metadata import SyncStatus
from app.services.phone_number_reconciler import PhoneNumberReconciler
from app.services.sync_guard import (
    Origin,
    OutboundGuard,
    PlatformRequestError,
    PropagationOutcome,
    record_propagation,
    resolve_origin,
)
from tests.conftest import FakeOmniClient, PhoneNumberFactory, persist


@pytest.fixture
def app_settings() -> Settings:
    return Settings(omni_api_key="geheim", omni_source_name="omnidimension")


class TestResolveOrigin:
    """Provenienz-Header → REMOTE oder DASHBOARD."""

    def test_source_header(self, app_settings):
        assert resolve_origin({"x-source": "OmniDimension"}, app_settings) == Origin.REMOTE

    def test_bearer_with_platform_key(self, app_settings):
        assert resolve_origin({"authorization": "Bearer geheim"}, app_settings) == Origin.REMOTE

    def test_other_bearer(self, app_settings):
        assert resolve_origin({"authorization": "Bearer fremd"}, app_settings) == Origin.DASHBOARD

    def test_own_source_is_dashboard(self, app_settings):
        assert resolve_origin({"x-source": "my-dashboard"}, app_settings) == Origin.DASHBOARD

    def test_no_headers(self, app_settings):
        assert resolve_origin({}, app_settings) == Origin.DASHBOARD

    def test_empty_key_never_matches(self):
        """Ohne konfigurierten API-Key zählt ein leerer Bearer nicht als Plattform."""
        assert resolve_origin({"authorization": "Bearer "}, Settings(omni_api_key="")) == Origin.DASHBOARD


class TestOutboundGuard:
    """Höchstens eine Weitergabe, nie für Plattform-Änderungen."""

    @pytest.mark.asyncio
    async def test_remote_skipped(self):
        omni = FakeOmniClient()
        outcome = await OutboundGuard(omni).propagate(Origin.REMOTE, "attach_files", ["1"], "2")
        assert outcome == PropagationOutcome.SKIPPED
        assert omni.calls == []

    @pytest.mark.asyncio
    async def test_dashboard_sent_with_int_ids(self):
        omni = FakeOmniClient()
        outcome = await OutboundGuard(omni).propagate(
            Origin.DASHBOARD, "attach_files", ["file_1", "2"], "agent_3"
        )
        assert outcome == PropagationOutcome.SENT
        assert omni.mutation_calls == [("attach_files", [1, 2], 3)]

    @pytest.mark.asyncio
    async def test_id_out_of_range(self):
        """IDs über 2147483647 werden nicht gesendet."""
        omni = FakeOmniClient()
        outcome = await OutboundGuard(omni).propagate(Origin.DASHBOARD, "delete_file", "2147483648")
        assert outcome == PropagationOutcome.INVALID_ID
        assert outcome.degraded
        assert omni.calls == []

    @pytest.mark.asyncio
    async def test_empty_id_list_invalid(self):
        outcome = await OutboundGuard(FakeOmniClient()).propagate(
            Origin.DASHBOARD, "attach_files", [], "1"
        )
        assert outcome == PropagationOutcome.INVALID_ID

    @pytest.mark.asyncio
    async def test_missing_client(self):
        outcome = await OutboundGuard(None).propagate(Origin.DASHBOARD, "delete_file", "1")
        assert outcome == PropagationOutcome.FAILED

    @pytest.mark.asyncio
    async def test_failing_client_tried_once(self):
        omni = FakeOmniClient(fail=True)
        outcome = await OutboundGuard(omni).propagate(Origin.DASHBOARD, "detach_phone_number", "5")
        assert outcome == PropagationOutcome.FAILED
        assert omni.mutation_calls == [("detach_phone_number", 5)]


class TestPlatformRequest:
    """Aufrufe, deren Antwort gebraucht wird: Fehler werden gemeldet, nicht verschluckt."""

    @pytest.mark.asyncio
    async def test_returns_response(self):
        omni = FakeOmniClient(created_id=42)
        response = await OutboundGuard(omni).request("create_agent", {"name": "Bot", "call_type": "Outgoing"})
        assert response["id"] == 42

    @pytest.mark.asyncio
    async def test_failure_raises(self):
        with pytest.raises(PlatformRequestError):
            await OutboundGuard(FakeOmniClient(fail=True)).request("delete_agent", 1)

    @pytest.mark.asyncio
    async def test_missing_client_raises(self):
        with pytest.raises(PlatformRequestError):
            await OutboundGuard(None).request("create_agent", {})


class TestRecordPropagation:
    """Fehlgeschlagene Weitergabe markiert Datensätze, erfolgreiche nicht."""

    @pytest.mark.asyncio
    async def test_failed_marks_error(self, db_session, broadcaster):
        phone = PhoneNumberFactory.create()
        await persist(db_session, phone)
        reconciler = PhoneNumberReconciler(db_session, broadcaster)

        await record_propagation(reconciler, [phone, None], PropagationOutcome.FAILED)

        assert phone.sync_status == SyncStatus.ERROR
        assert broadcaster.names() == ["phone_number_updated"]

    @pytest.mark.asyncio
    async def test_sent_leaves_status(self, db_session, broadcaster):
        phone = PhoneNumberFactory.create()
        await persist(db_session, phone)
        reconciler = PhoneNumberReconciler(db_session, broadcaster)

        await record_propagation(reconciler, [phone], PropagationOutcome.SENT)

        assert phone.sync_status == SyncStatus.SYNCED
        assert broadcaster.events == []
