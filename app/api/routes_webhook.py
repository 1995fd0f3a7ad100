"""Webhook Route - Der eine Webhook-Endpoint für die Plattform."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_broadcaster, get_guard, get_origin
from app.api.exception_handlers import UnroutableWebhookException
from app.database import get_db
from app.schemas.webhook import WebhookResponse
from app.services.event_bus import ChangeBroadcaster
from app.services.sync_guard import Origin, OutboundGuard
from app.services.webhook_router import EXPECTED_KEY_HINT, UnroutableWebhookError, WebhookRouter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Webhook"])


@router.post("", response_model=WebhookResponse)
async def receive_webhook(
    request: Request,
    origin: Origin = Depends(get_origin),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """
    Nimmt beliebige Push-Payloads der Plattform entgegen.

    Nicht zuordenbare Payloads ergeben 400 (nie ein stilles 200), damit die
    Retry-Logik der Plattform greift.
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise UnroutableWebhookException("Webhook-Body ist kein gültiges JSON", EXPECTED_KEY_HINT)

    webhook_router = WebhookRouter(db, guard, broadcaster)
    try:
        decision, result = await webhook_router.handle(payload, origin)
    except UnroutableWebhookError as e:
        logger.warning(f"Webhook nicht zuordenbar: {e}")
        raise UnroutableWebhookException(str(e), e.expected)

    return WebhookResponse(
        resource=decision.resource,
        mutation=decision.mutation,
        message=f"{decision.resource.value} {decision.mutation.value} verarbeitet",
        result=result,
    )
