"""Tests für den Plattform-Client (HTTP über httpx.MockTransport)."""

import json

import httpx
import pytest

from app.services.omni_client import (
    OmniAuthenticationError,
    OmniClient,
    OmniError,
    OmniNotFoundError,
    OmniRateLimitError,
)

BASE_URL = "https://omni.test/api/v1"


def make_client(handler, max_retries: int = 2) -> OmniClient:
    """Client mit gemocktem Transport, ohne Netzwerk."""
    client = OmniClient(api_key="test-key", base_url=BASE_URL, max_retries=max_retries)
    client._client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return client


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    """Retries ohne echte Wartezeit."""
    monkeypatch.setattr(OmniClient, "_backoff_delay", staticmethod(lambda attempt: 0))


class TestRequests:
    @pytest.mark.asyncio
    async def test_fetch_page_params(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"call_log_data": [], "total_records": 0})

        client = make_client(handler)
        result = await client.fetch_page("calls/logs", 2, 50, {"agentid": 7, "call_status": None})
        await client.close()

        assert result == {"call_log_data": [], "total_records": 0}
        assert seen[0].url.path == "/api/v1/calls/logs"
        assert dict(seen[0].url.params) == {"pageno": "2", "pagesize": "50", "agentid": "7"}

    @pytest.mark.asyncio
    async def test_mutation_body(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True})

        client = make_client(handler)
        await client.attach_files([1, 2], 3)
        await client.close()

        assert seen[0].method == "POST"
        assert seen[0].url.path == "/api/v1/knowledge_base/attach"
        assert json.loads(seen[0].content) == {"file_ids": [1, 2], "agent_id": 3}

    @pytest.mark.asyncio
    async def test_agent_update_and_delete(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True})

        client = make_client(handler)
        await client.update_agent(7, {"name": "Neu"})
        await client.delete_agent(7)
        await client.close()

        assert [(r.method, r.url.path) for r in seen] == [
            ("PUT", "/api/v1/agents/7"),
            ("DELETE", "/api/v1/agents/7"),
        ]
        assert json.loads(seen[0].content) == {"name": "Neu"}

    @pytest.mark.asyncio
    async def test_import_phone_number(self, caplog):
        """Zugangsdaten des Anbieters landen nicht im Log."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": 55})

        client = make_client(handler)
        with caplog.at_level("DEBUG", logger="app.services.omni_client"):
            result = await client.import_phone_number("exotel", {"exotel_api_token": "geheim"})
        await client.close()

        assert result == {"id": 55}
        assert seen[0].url.path == "/api/v1/phone_number/import/exotel"
        assert "geheim" not in caplog.text

    @pytest.mark.asyncio
    async def test_empty_response(self):
        client = make_client(lambda request: httpx.Response(204))
        assert await client.delete_file(5) == {}
        await client.close()

    @pytest.mark.asyncio
    async def test_default_headers(self):
        """Ausgehende Requests tragen X-Source, damit die Plattform sie erkennt."""
        client = OmniClient(api_key="test-key", base_url=BASE_URL)
        http = await client._get_client()
        assert http.headers["X-Source"] == "my-dashboard"
        assert http.headers["Authorization"] == "Bearer test-key"
        await client.close()

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr("app.services.omni_client.settings.omni_api_key", "")
        with pytest.raises(ValueError):
            OmniClient()


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_unauthorized(self):
        client = make_client(lambda request: httpx.Response(401))
        with pytest.raises(OmniAuthenticationError):
            await client.fetch_page("agents", 1, 10)

    @pytest.mark.asyncio
    async def test_not_found(self):
        client = make_client(lambda request: httpx.Response(404))
        with pytest.raises(OmniNotFoundError):
            await client.fetch_page("agents", 1, 10)

    @pytest.mark.asyncio
    async def test_rate_limit_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, headers={"Retry-After": "30"})

        client = make_client(handler)
        with pytest.raises(OmniRateLimitError) as exc_info:
            await client.fetch_page("agents", 1, 10)

        assert exc_info.value.retry_after == 30
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        responses = [httpx.Response(502), httpx.Response(200, json=[{"id": 1}])]

        client = make_client(lambda request: responses.pop(0))
        assert await client.fetch_page("agents", 1, 10) == [{"id": 1}]
        assert responses == []

    @pytest.mark.asyncio
    async def test_server_error_exhausted(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"message": "kaputt"})

        client = make_client(handler, max_retries=2)
        with pytest.raises(OmniError) as exc_info:
            await client.fetch_page("agents", 1, 10)

        assert len(calls) == 3
        assert exc_info.value.status_code == 500
        assert "kaputt" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_integer_overflow_hint(self):
        client = make_client(
            lambda request: httpx.Response(400, json={"error": "value out of range for type integer"})
        )
        with pytest.raises(OmniError) as exc_info:
            await client.delete_file(1)
        assert "ID zu groß" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_error_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("weg", request=request)
            return httpx.Response(200, json=[])

        client = make_client(handler)
        assert await client.fetch_page("agents", 1, 10) == []
        assert len(attempts) == 2
