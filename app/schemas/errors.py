"""Error Schemas für das Voice-Dashboard."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Fehlercodes für das Voice-Dashboard."""

    # Validierungsfehler (400)
    VALIDATION_ERROR = "validation_error"
    INVALID_UUID = "invalid_uuid"
    INVALID_REMOTE_ID = "invalid_remote_id"
    UNROUTABLE_WEBHOOK = "unroutable_webhook"
    UNKNOWN_RESOURCE = "unknown_resource"

    # Nicht gefunden (404)
    NOT_FOUND = "not_found"
    AGENT_NOT_FOUND = "agent_not_found"
    PHONE_NUMBER_NOT_FOUND = "phone_number_not_found"
    FILE_NOT_FOUND = "file_not_found"
    CALL_RECORD_NOT_FOUND = "call_record_not_found"
    CAMPAIGN_NOT_FOUND = "campaign_not_found"

    # Konflikt (409)
    DUPLICATE_ENTRY = "duplicate_entry"
    CONFLICT = "conflict"

    # Server-Fehler (500)
    INTERNAL_ERROR = "internal_error"

    # Externe Plattform (502/503)
    OMNI_SERVICE_ERROR = "omni_service_error"
    DATABASE_ERROR = "database_error"

    # Gateway Timeout (504)
    OMNI_TIMEOUT = "omni_timeout"


class ValidationErrorDetail(BaseModel):
    """Detail eines Validierungsfehlers."""

    field: str = Field(description="Betroffenes Feld")
    message: str = Field(description="Fehlermeldung")
    value: Any | None = Field(default=None, description="Ungültiger Wert")


class ErrorResponse(BaseModel):
    """Standard-Fehler-Response."""

    success: bool = Field(default=False, description="Immer false bei Fehlern")
    error: ErrorCode = Field(description="Fehlercode")
    message: str = Field(description="Fehlermeldung")
    details: list[ValidationErrorDetail] | None = Field(
        default=None,
        description="Details bei Validierungsfehlern",
    )
    request_id: str | None = Field(
        default=None,
        description="Request-ID für Debugging",
    )

    model_config = {"json_schema_extra": {"examples": [
        {
            "success": False,
            "error": "unroutable_webhook",
            "message": "Webhook-Payload konnte keiner Ressource zugeordnet werden",
            "details": [
                {
                    "field": "file",
                    "message": "file, file_id, files, file_ids",
                    "value": None,
                }
            ],
            "request_id": "abc123",
        }
    ]}}
