"""Pydantic Schemas für das Voice-Dashboard."""

from app.schemas.errors import ErrorCode, ErrorResponse, ValidationErrorDetail
from app.schemas.pagination import PaginatedResponse, PaginationMeta, PaginationParams
from app.schemas.resources import (
    AgentResponse,
    CallRecordResponse,
    CallStatsResponse,
    CampaignResponse,
    FileAttachRequest,
    KnowledgeFileResponse,
    MutationResponse,
    PhoneNumberAttachRequest,
    PhoneNumberDetachRequest,
    PhoneNumberResponse,
    ResourceKind,
)
from app.schemas.webhook import MutationKind, WebhookResponse

__all__ = [
    "ErrorCode",
    "ErrorResponse",
    "ValidationErrorDetail",
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "AgentResponse",
    "CallRecordResponse",
    "CallStatsResponse",
    "CampaignResponse",
    "FileAttachRequest",
    "KnowledgeFileResponse",
    "MutationResponse",
    "PhoneNumberAttachRequest",
    "PhoneNumberDetachRequest",
    "PhoneNumberResponse",
    "ResourceKind",
    "MutationKind",
    "WebhookResponse",
]
