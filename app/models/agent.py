"""Agent Model - Voice-Agenten (Bots) der Plattform."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.sync_metadata import SyncStatus, utcnow


class Agent(Base):
    """Lokale Kopie eines Voice-Agenten."""

    __tablename__ = "agents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Identität auf der Plattform
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    remote_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Stammdaten
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text)
    use_case: Mapped[str | None] = mapped_column(String(100), default="Support")
    llm: Mapped[str | None] = mapped_column(String(100))
    voice: Mapped[str | None] = mapped_column(String(100))
    web_search: Mapped[bool] = mapped_column(Boolean, default=False)
    post_call: Mapped[str | None] = mapped_column(String(50), default="None")
    integrations: Mapped[list | None] = mapped_column(JSON, default=list)
    outgoing: Mapped[bool] = mapped_column(Boolean, default=False)

    # Abgeleiteter Zähler, wird nach jedem Attach/Detach neu gezählt
    knowledge_base_file_count: Mapped[int] = mapped_column(Integer, default=0)

    # Sync-Metadaten
    sync_status: Mapped[SyncStatus] = mapped_column(Enum(SyncStatus), default=SyncStatus.SYNCED)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "remote_id", name="uq_agents_owner_remote"),
        Index("ix_agents_owner_name", "owner_id", "name"),
    )

    def __repr__(self) -> str:
        return f"<Agent {self.remote_id} '{self.name}'>"
