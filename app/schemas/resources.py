"""Schemas für die gespiegelten Plattform-Ressourcen."""

import enum
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.phone_number import PhoneProvider
from app.models.sync_metadata import SyncStatus


class ResourceKind(str, enum.Enum):
    """Ressourcen-Typen der Plattform. Der Wert ist zugleich Event-Präfix."""

    FILE = "file"
    AGENT = "agent"
    PHONE_NUMBER = "phone_number"
    CALL = "call_log"
    CAMPAIGN = "campaign"


class SyncedRecordResponse(BaseModel):
    """Gemeinsame Felder aller gespiegelten Datensätze."""

    id: UUID
    owner_id: str
    remote_id: str
    sync_status: SyncStatus
    last_synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class AgentResponse(SyncedRecordResponse):
    """Schema für Agent-Responses."""

    name: str
    description: str | None = None
    use_case: str | None = None
    llm: str | None = None
    voice: str | None = None
    web_search: bool = False
    post_call: str | None = None
    integrations: list | None = None
    outgoing: bool = False
    knowledge_base_file_count: int = 0


class PhoneNumberResponse(SyncedRecordResponse):
    """Schema für Rufnummern-Responses."""

    number: str
    label: str | None = None
    provider: PhoneProvider
    country: str | None = None
    status: str
    capabilities: dict = Field(default_factory=dict)
    attached_agent_id: UUID | None = None


class KnowledgeFileResponse(SyncedRecordResponse):
    """Schema für Wissensdatenbank-Dateien."""

    filename: str
    original_name: str | None = None
    size: int = 0
    mime_type: str
    url: str | None = None
    storage_path: str | None = None
    attached_agent_ids: list[str] = Field(default_factory=list)


class CallRecordResponse(SyncedRecordResponse):
    """Schema für Anruf-Logs."""

    source: str | None = None
    to_number: str | None = None
    normalized_source: str | None = None
    normalized_to: str | None = None
    duration: int = 0
    call_type: str | None = None
    status: str
    cost: float = 0.0
    cqs_score: float | None = None
    transcript: str | None = None
    recording_url: str | None = None
    call_time: datetime | None = None
    agent_id: UUID | None = None
    bot_name: str | None = None
    call_request_id: str | None = None
    campaign_name: str | None = None
    campaign_id: UUID | None = None


class CampaignResponse(SyncedRecordResponse):
    """Schema für Bulk-Call-Kampagnen."""

    name: str
    status: str | None = None
    agent_id: UUID | None = None
    phone_number_id: UUID | None = None
    bot_name: str | None = None
    from_number: str | None = None
    total_calls: int = 0
    completed_calls: int = 0
    picked_up_calls: int = 0
    failed_calls: int = 0
    total_cost: float = 0.0
    progress_percent: int = 0


class CallStatsResponse(BaseModel):
    """Aggregierte Anruf-Statistik eines Owners."""

    total_calls: int = 0
    completed_calls: int = 0
    failed_calls: int = 0
    average_duration: float = 0.0
    total_duration: int = 0
    total_cost: float = 0.0


# ── Dashboard-Aktionen ────────────────────────────────


class PhoneNumberAttachRequest(BaseModel):
    """Rufnummer einem Agenten zuordnen."""

    phone_number_id: str | int = Field(description="Remote-ID der Rufnummer")
    agent_id: str | int = Field(description="Remote-ID des Agenten")


class PhoneNumberDetachRequest(BaseModel):
    """Zuordnung einer Rufnummer lösen."""

    phone_number_id: str | int = Field(description="Remote-ID der Rufnummer")


class FileAttachRequest(BaseModel):
    """Dateien einem Agenten zuordnen bzw. davon lösen."""

    file_ids: list[str | int] = Field(min_length=1, description="Remote-IDs der Dateien")
    agent_id: str | int = Field(description="Remote-ID des Agenten")


class MutationResponse(BaseModel):
    """Antwort auf eine lokale Mutation inkl. Ergebnis der Weitergabe an die Plattform."""

    success: bool = True
    message: str
    propagation: str = Field(description="sent, skipped, failed oder invalid_id")
    data: dict | None = None


class AgentUseCase(str, enum.Enum):
    """Einsatzzwecke, die die Plattform für Agenten kennt."""

    LEAD_GENERATION = "Lead Generation"
    APPOINTMENTS = "Appointments"
    SUPPORT = "Support"
    NEGOTIATION = "Negotiation"
    COLLECTIONS = "Collections"


def _context_breakdown(purpose: str, use_case: AgentUseCase) -> list[dict]:
    return [
        {"title": "Purpose", "body": purpose, "is_enabled": True},
        {"title": "Use Case", "body": use_case.value, "is_enabled": True},
    ]


class AgentCreateRequest(BaseModel):
    """Neuen Agenten anlegen (zuerst auf der Plattform)."""

    name: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    use_case: AgentUseCase
    llm: str | None = None
    voice: str | None = None
    outgoing: bool = True

    def to_platform(self) -> dict:
        """Body für agents/create."""
        return {
            "name": self.name,
            "welcome_message": self.description,
            "context_breakdown": _context_breakdown(self.description, self.use_case),
            "call_type": "Outgoing" if self.outgoing else "Incoming",
        }

    def to_record(self) -> dict:
        """Lokale Felder, falls die Plattform nur die ID zurückgibt."""
        record = {
            "name": self.name,
            "description": self.description,
            "use_case": self.use_case.value,
            "bot_call_type": "Outgoing" if self.outgoing else "Incoming",
        }
        if self.llm:
            record["llm"] = self.llm
        if self.voice:
            record["voice"] = self.voice
        return record


class AgentUpdateRequest(BaseModel):
    """Agent ändern; nur gesetzte Felder werden übertragen."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, min_length=1)
    use_case: AgentUseCase | None = None
    outgoing: bool | None = None

    def to_platform(self, current_name: str) -> dict:
        payload: dict = {}
        if self.name:
            payload["name"] = self.name
        if self.description:
            payload["welcome_message"] = self.description
        if self.outgoing is not None:
            payload["call_type"] = "Outgoing" if self.outgoing else "Incoming"
        if self.use_case:
            purpose = self.description or self.name or current_name
            payload["context_breakdown"] = _context_breakdown(purpose, self.use_case)
        return payload

    def to_record(self) -> dict:
        record: dict = {}
        if self.name:
            record["name"] = self.name
        if self.description:
            record["description"] = self.description
        if self.use_case:
            record["use_case"] = self.use_case.value
        if self.outgoing is not None:
            record["bot_call_type"] = "Outgoing" if self.outgoing else "Incoming"
        return record


class TwilioImportRequest(BaseModel):
    """Twilio-Nummer in den Plattform-Account importieren."""

    phone_number: str = Field(min_length=1)
    account_sid: str = Field(min_length=1)
    account_token: str = Field(min_length=1)
    name: str | None = None

    @property
    def number(self) -> str:
        return self.phone_number

    def to_platform(self) -> dict:
        return {
            "phone_number": self.phone_number,
            "account_sid": self.account_sid,
            "account_token": self.account_token,
            "name": self.name or self.phone_number,
        }


class ExotelImportRequest(BaseModel):
    """Exotel-Nummer in den Plattform-Account importieren."""

    exotel_phone_number: str = Field(min_length=1)
    exotel_api_key: str = Field(min_length=1)
    exotel_api_token: str = Field(min_length=1)
    exotel_subdomain: str = Field(min_length=1)
    exotel_account_sid: str = Field(min_length=1)
    exotel_app_id: str = Field(min_length=1)
    name: str | None = None

    @property
    def number(self) -> str:
        return self.exotel_phone_number

    def to_platform(self) -> dict:
        return {**self.model_dump(exclude={"name"}), "name": self.name or self.exotel_phone_number}
