"""Schemas für den Plattform-Webhook."""

import enum

from pydantic import BaseModel, Field

from app.schemas.resources import ResourceKind


class MutationKind(str, enum.Enum):
    """Art der Änderung, die ein Webhook beschreibt."""

    CREATE_UPDATE = "create_update"
    DELETE = "delete"
    ATTACH = "attach"
    DETACH = "detach"


class WebhookResponse(BaseModel):
    """Antwort des Webhook-Endpoints."""

    success: bool = True
    resource: ResourceKind
    mutation: MutationKind
    message: str = ""
    result: dict = Field(default_factory=dict)
