"""Sync- und Abgleichs-Services für das Voice-Dashboard."""

from app.services.campaign_resolver import INCOMING_CALL_LABEL, CampaignResolution, CampaignResolver
from app.services.event_bus import ChangeBroadcaster, change_broadcaster
from app.services.field_normalizer import NormalizedBatch, normalize_response, parse_duration
from app.services.omni_client import (
    OmniAuthenticationError,
    OmniClient,
    OmniError,
    OmniNotFoundError,
    OmniRateLimitError,
)
from app.services.reconciler_base import BaseReconciler, ReconcileResult
from app.services.sync_guard import Origin, OutboundGuard, PropagationOutcome, resolve_origin
from app.services.sync_scheduler import BackgroundSyncScheduler, PullResult
from app.services.webhook_router import RouteDecision, UnroutableWebhookError, WebhookRouter, classify

__all__ = [
    "INCOMING_CALL_LABEL",
    "CampaignResolution",
    "CampaignResolver",
    "ChangeBroadcaster",
    "change_broadcaster",
    "NormalizedBatch",
    "normalize_response",
    "parse_duration",
    "OmniAuthenticationError",
    "OmniClient",
    "OmniError",
    "OmniNotFoundError",
    "OmniRateLimitError",
    "BaseReconciler",
    "ReconcileResult",
    "Origin",
    "OutboundGuard",
    "PropagationOutcome",
    "resolve_origin",
    "BackgroundSyncScheduler",
    "PullResult",
    "RouteDecision",
    "UnroutableWebhookError",
    "WebhookRouter",
    "classify",
]
