"""CallRecord Model - Anruf-Protokolle der Plattform."""

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.sync_metadata import SyncStatus, utcnow


class CallRecord(Base):
    """Lokale Kopie eines Anruf-Logs.

    Wird beim ersten Import angelegt und bei jedem weiteren Sync derselben
    Remote-ID in-place aktualisiert. Gelöscht wird nur durch den Benutzer
    oder per Delete-Webhook.
    """

    __tablename__ = "call_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    remote_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Nummern (roh + letzte 10 Ziffern)
    source: Mapped[str | None] = mapped_column(String(50))
    to_number: Mapped[str | None] = mapped_column(String(50))
    normalized_source: Mapped[str | None] = mapped_column(String(20))
    normalized_to: Mapped[str | None] = mapped_column(String(20))

    # Anruf-Details
    duration: Mapped[int] = mapped_column(Integer, default=0)
    call_type: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(50), default="completed")
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    cqs_score: Mapped[float | None] = mapped_column(Float)
    transcript: Mapped[str | None] = mapped_column(Text)
    recording_url: Mapped[str | None] = mapped_column(Text)
    call_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Agent: Remote-ID oder Name, Referenz bleibt bei Fehlschlag erhalten
    agent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True
    )
    bot_name: Mapped[str | None] = mapped_column(String(255))

    # Kampagne: denormalisierter Name aus dem Payload + lazy aufgelöste Referenz
    call_request_id: Mapped[str | None] = mapped_column(String(64))
    campaign_name: Mapped[str | None] = mapped_column(String(255))
    campaign_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True
    )

    sync_status: Mapped[SyncStatus] = mapped_column(Enum(SyncStatus), default=SyncStatus.SYNCED)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "remote_id", name="uq_call_records_owner_remote"),
        Index("ix_call_records_owner_call_time", "owner_id", "call_time"),
        Index("ix_call_records_agent", "agent_id"),
        Index("ix_call_records_call_request", "call_request_id"),
    )

    def __repr__(self) -> str:
        return f"<CallRecord {self.remote_id} {self.source} -> {self.to_number}>"
