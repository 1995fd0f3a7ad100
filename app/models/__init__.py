"""SQLAlchemy Models für das Voice-Dashboard."""

from app.models.agent import Agent
from app.models.call_record import CallRecord
from app.models.campaign import Campaign, CampaignLine
from app.models.knowledge_file import KnowledgeFile, knowledge_file_agents
from app.models.phone_number import PhoneNumber, PhoneProvider
from app.models.sync_metadata import SyncStatus

__all__ = [
    "Agent",
    "CallRecord",
    "Campaign",
    "CampaignLine",
    "KnowledgeFile",
    "knowledge_file_agents",
    "PhoneNumber",
    "PhoneProvider",
    "SyncStatus",
]
