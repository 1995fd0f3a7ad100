"""Campaign Model - Bulk-Call-Kampagnen und ihre einzelnen Anruf-Zeilen."""

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
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.sync_metadata import SyncStatus, utcnow


class Campaign(Base):
    """Lokale Kopie einer Bulk-Call-Kampagne mit aggregierten Zählern."""

    __tablename__ = "campaigns"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    remote_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str | None] = mapped_column(String(50))

    # Schwache Referenzen
    agent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True
    )
    phone_number_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("phone_numbers.id", ondelete="SET NULL"), nullable=True
    )
    bot_name: Mapped[str | None] = mapped_column(String(255))
    from_number: Mapped[str | None] = mapped_column(String(50))

    # Fortschritt
    total_calls: Mapped[int] = mapped_column(Integer, default=0)
    completed_calls: Mapped[int] = mapped_column(Integer, default=0)
    picked_up_calls: Mapped[int] = mapped_column(Integer, default=0)
    failed_calls: Mapped[int] = mapped_column(Integer, default=0)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0)
    progress_percent: Mapped[int] = mapped_column(Integer, default=0)

    sync_status: Mapped[SyncStatus] = mapped_column(Enum(SyncStatus), default=SyncStatus.SYNCED)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "remote_id", name="uq_campaigns_owner_remote"),
        Index("ix_campaigns_owner_created", "owner_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Campaign {self.remote_id} '{self.name}'>"


class CampaignLine(Base):
    """Ein einzelner Anruf einer Kampagne.

    Eindeutig ist die Call-Request-ID innerhalb der Kampagne, nicht die
    Zielnummer: ein Retry an dieselbe Nummer ist eine eigene Zeile. Zeilen
    ohne Call-Request-ID sind Kontakte, die noch keinem Anruf zugeordnet sind.
    """

    __tablename__ = "campaign_lines"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False
    )
    remote_call_id: Mapped[str | None] = mapped_column(String(64))
    to_number: Mapped[str] = mapped_column(String(50), nullable=False)
    normalized_to: Mapped[str | None] = mapped_column(String(20))
    call_status: Mapped[str | None] = mapped_column(String(50))
    duration: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index(
            "uq_campaign_lines_campaign_call",
            "campaign_id",
            "remote_call_id",
            unique=True,
            postgresql_where=text("remote_call_id IS NOT NULL"),
            sqlite_where=text("remote_call_id IS NOT NULL"),
        ),
        Index("ix_campaign_lines_campaign_to", "campaign_id", "to_number"),
        Index("ix_campaign_lines_remote_call", "remote_call_id"),
        Index("ix_campaign_lines_normalized_to", "normalized_to"),
    )
