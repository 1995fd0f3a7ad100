"""OmniDimension API Client.

Dieser Client kommuniziert mit der Voice-Plattform, um Agenten, Rufnummern,
Anruf-Logs, Wissensdatenbank-Dateien und Bulk-Call-Kampagnen abzurufen und
Zuordnungen (attach/detach) zurückzuschreiben.
"""

import asyncio
import logging
from typing import Any

import httpx

from app.config import limits, settings

logger = logging.getLogger(__name__)

SYNC_VERSION = "1.0"


class OmniError(Exception):
    """Basis-Exception für Plattform-Fehler."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class OmniRateLimitError(OmniError):
    """Rate-Limit erreicht."""

    def __init__(self, retry_after: int | None = None):
        self.retry_after = retry_after or 60
        super().__init__(
            f"Rate-Limit erreicht. Erneuter Versuch in {self.retry_after} Sekunden.",
            status_code=429,
        )


class OmniAuthenticationError(OmniError):
    """Authentifizierungsfehler."""

    def __init__(self):
        super().__init__("Plattform-Authentifizierung fehlgeschlagen. API-Key prüfen.", status_code=401)


class OmniNotFoundError(OmniError):
    """Ressource nicht gefunden."""

    def __init__(self, resource: str):
        super().__init__(f"Ressource nicht gefunden: {resource}", status_code=404)


class OmniClient:
    """Client für die OmniDimension API.

    Unterstützt:
    - Listen-Abruf im pageno/pagesize-Schema
    - attach/detach/delete per POST
    - Retry mit exponentiellem Backoff bei Timeouts, Verbindungs- und 5xx-Fehlern
    - X-Source Header, damit die Plattform eigene Änderungen erkennt
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: int | None = None,
        max_retries: int | None = None,
    ):
        """Initialisiert den Plattform-Client.

        Args:
            api_key: API-Schlüssel (Standard: aus Settings)
            base_url: Basis-URL der API (Standard: aus Settings)
            timeout: Timeout in Sekunden (Standard: aus Limits)
            max_retries: Anzahl Wiederholungen (Standard: aus Limits)
        """
        self.api_key = api_key or settings.omni_api_key
        self.base_url = (base_url or settings.omni_base_url).rstrip("/")
        self.timeout = timeout or limits.TIMEOUT_OMNI
        self.max_retries = limits.RETRY_MAX_ATTEMPTS if max_retries is None else max_retries

        if not self.api_key:
            raise ValueError("Plattform API-Key nicht konfiguriert")

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Gibt den HTTP-Client zurück (lazy initialization)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "X-Source": settings.dashboard_source_name,
                    "X-Sync-Version": SYNC_VERSION,
                },
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def close(self) -> None:
        """Schließt den HTTP-Client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _backoff_delay(attempt: int) -> float:
        """Exponentieller Backoff: 1s, 2s, 4s ... gedeckelt."""
        return min(limits.RETRY_INITIAL_DELAY * (2**attempt), limits.RETRY_MAX_DELAY)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        error_msg = f"Plattform API Fehler: {response.status_code}"
        try:
            error_data = response.json()
        except ValueError:
            return f"{error_msg} - {response.text[:200]}"
        if isinstance(error_data, dict):
            detail = error_data.get("message") or error_data.get("error")
            if detail:
                error_msg = f"{error_msg} - {detail}"
        if "out of range for type integer" in error_msg:
            error_msg = f"{error_msg} (ID zu groß für die Plattform)"
        return error_msg

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """Führt einen API-Request durch.

        Args:
            method: HTTP-Methode (GET, POST, PUT, DELETE)
            endpoint: API-Endpunkt (ohne Basis-URL)
            params: Query-Parameter
            json_body: JSON-Body für POST und PUT

        Returns:
            JSON-Response (dict oder list)

        Raises:
            OmniError: Bei API-Fehlern
            OmniRateLimitError: Bei Rate-Limit
            OmniAuthenticationError: Bei Authentifizierungsfehler
            OmniNotFoundError: Bei 404
        """
        client = await self._get_client()
        url = endpoint.lstrip("/")

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(f"Omni Request: {method} {url} (Versuch {attempt + 1})")
                response = await client.request(method, url, params=params, json=json_body)
            except httpx.TimeoutException:
                if attempt < self.max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        f"Omni Timeout bei {url}, Versuch {attempt + 2}/{self.max_retries + 1} in {delay}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise OmniError(f"Plattform Timeout nach {self.max_retries + 1} Versuchen: {url}")
            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        f"Omni Verbindungsfehler: {e}, Versuch {attempt + 2}/{self.max_retries + 1} in {delay}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise OmniError(f"Plattform Verbindungsfehler: {e}")

            if response.status_code in (200, 201, 204):
                if response.status_code == 204 or not response.content:
                    return {}
                return response.json()

            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After")
                raise OmniRateLimitError(
                    retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None
                )

            if response.status_code == 401:
                raise OmniAuthenticationError()

            if response.status_code == 404:
                raise OmniNotFoundError(url)

            if response.status_code >= 500 and attempt < self.max_retries:
                delay = self._backoff_delay(attempt)
                logger.warning(
                    f"Omni Serverfehler {response.status_code} bei {url}, neuer Versuch in {delay}s"
                )
                await asyncio.sleep(delay)
                continue

            raise OmniError(self._error_message(response), status_code=response.status_code)

        raise OmniError(f"Plattform-Request fehlgeschlagen: {url}")

    # ── Listen ──────────────────────────────────────

    async def fetch_page(
        self,
        endpoint: str,
        pageno: int,
        pagesize: int,
        filters: dict[str, Any] | None = None,
    ) -> Any:
        """Ruft eine Seite einer Ressourcen-Liste ab.

        Args:
            endpoint: Listen-Endpunkt (z.B. "calls/logs")
            pageno: Seitennummer (1-basiert)
            pagesize: Einträge pro Seite
            filters: Zusätzliche Filter (agentid, call_status, ...)

        Returns:
            Rohe Response in einer der bekannten Envelope-Formen
        """
        params: dict[str, Any] = {"pageno": pageno, "pagesize": pagesize}
        for name, value in (filters or {}).items():
            if value is not None and value != "":
                params[name] = value
        logger.debug(f"Omni fetch_page: {endpoint} pageno={pageno} pagesize={pagesize}")
        return await self._request("GET", endpoint, params=params)

    async def post(self, endpoint: str, body: dict[str, Any]) -> Any:
        """Schickt eine Mutation (create/attach/detach/delete) an die Plattform."""
        logger.info(f"Omni POST {endpoint}: {body}")
        return await self._request("POST", endpoint, json_body=body)

    # ── Mutationen ──────────────────────────────────

    async def attach_phone_number(self, phone_number_id: int, agent_id: int) -> Any:
        """Ordnet eine Rufnummer einem Agenten zu."""
        return await self.post(
            "phone_number/attach",
            {"phone_number_id": phone_number_id, "agent_id": agent_id},
        )

    async def detach_phone_number(self, phone_number_id: int) -> Any:
        """Löst die Agenten-Zuordnung einer Rufnummer."""
        return await self.post("phone_number/detach", {"phone_number_id": phone_number_id})

    async def delete_phone_number(self, phone_number_id: int) -> Any:
        """Entfernt eine Rufnummer aus dem Plattform-Account."""
        return await self.post("phone_number/delete", {"phone_number_id": phone_number_id})

    async def attach_files(self, file_ids: list[int], agent_id: int) -> Any:
        """Ordnet Wissensdatenbank-Dateien einem Agenten zu."""
        return await self.post(
            "knowledge_base/attach",
            {"file_ids": file_ids, "agent_id": agent_id},
        )

    async def detach_files(self, file_ids: list[int], agent_id: int) -> Any:
        """Löst Wissensdatenbank-Dateien von einem Agenten."""
        return await self.post(
            "knowledge_base/detach",
            {"file_ids": file_ids, "agent_id": agent_id},
        )

    async def delete_file(self, file_id: int) -> Any:
        """Löscht eine Wissensdatenbank-Datei auf der Plattform."""
        return await self.post("knowledge_base/delete", {"file_id": file_id})

    # ── Anlegen und Import ──────────────────────────

    async def create_agent(self, payload: dict[str, Any]) -> Any:
        """Legt einen Agenten an; die Antwort enthält dessen Remote-ID."""
        return await self.post("agents/create", payload)

    async def update_agent(self, agent_id: int, payload: dict[str, Any]) -> Any:
        logger.info(f"Omni PUT agents/{agent_id}: {payload}")
        return await self._request("PUT", f"agents/{agent_id}", json_body=payload)

    async def delete_agent(self, agent_id: int) -> Any:
        logger.info(f"Omni DELETE agents/{agent_id}")
        return await self._request("DELETE", f"agents/{agent_id}")

    async def import_phone_number(self, provider: str, payload: dict[str, Any]) -> Any:
        """
        Importiert eine Rufnummer eines Telefonie-Anbieters (twilio, exotel).

        Der Body enthält Zugangsdaten des Anbieters und wird nicht geloggt.
        """
        logger.info(f"Omni POST phone_number/import/{provider}")
        return await self._request("POST", f"phone_number/import/{provider}", json_body=payload)

    # ── Context Manager ─────────────────────────────

    async def __aenter__(self):
        """Async Context Manager Entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async Context Manager Exit."""
        await self.close()
