"""PhoneNumber Model - importierte Rufnummern der Plattform."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    JSON,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.sync_metadata import SyncStatus, utcnow


class PhoneProvider(str, enum.Enum):
    """Telefonie-Anbieter einer Nummer."""

    TWILIO = "TWILIO"
    EXOTEL = "EXOTEL"
    OTHER = "OTHER"


def default_capabilities() -> dict:
    return {"voice": True, "sms": False}


class PhoneNumber(Base):
    """Lokale Kopie einer Rufnummer mit höchstens einem zugeordneten Agenten."""

    __tablename__ = "phone_numbers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    remote_id: Mapped[str] = mapped_column(String(64), nullable=False)

    number: Mapped[str] = mapped_column(String(50), nullable=False)
    label: Mapped[str | None] = mapped_column(String(255))
    provider: Mapped[PhoneProvider] = mapped_column(
        Enum(PhoneProvider), default=PhoneProvider.OTHER
    )
    country: Mapped[str | None] = mapped_column(String(10))
    status: Mapped[str] = mapped_column(String(30), default="Active")
    capabilities: Mapped[dict] = mapped_column(JSON, default=default_capabilities)

    # Schwache Referenz: Agent darf verschwinden, Nummer bleibt
    attached_agent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("agents.id", ondelete="SET NULL"),
        nullable=True,
    )

    sync_status: Mapped[SyncStatus] = mapped_column(Enum(SyncStatus), default=SyncStatus.SYNCED)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "remote_id", name="uq_phone_numbers_owner_remote"),
        Index("ix_phone_numbers_attached_agent", "attached_agent_id"),
    )

    def __repr__(self) -> str:
        return f"<PhoneNumber {self.remote_id} {self.number}>"
