"""KnowledgeFile Model - Wissensdatenbank-Dateien und ihre Agenten-Zuordnung."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.agent import Agent
from app.models.sync_metadata import SyncStatus, utcnow

# n:m Zuordnung Datei <-> Agent
knowledge_file_agents = Table(
    "knowledge_file_agents",
    Base.metadata,
    Column(
        "file_id",
        Uuid,
        ForeignKey("knowledge_files.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "agent_id",
        Uuid,
        ForeignKey("agents.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class KnowledgeFile(Base):
    """Lokale Kopie einer Wissensdatenbank-Datei."""

    __tablename__ = "knowledge_files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    remote_id: Mapped[str] = mapped_column(String(64), nullable=False)

    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    original_name: Mapped[str | None] = mapped_column(String(500))
    size: Mapped[int] = mapped_column(Integer, default=0)
    mime_type: Mapped[str] = mapped_column(String(100), default="application/pdf")
    url: Mapped[str | None] = mapped_column(Text)
    storage_path: Mapped[str | None] = mapped_column(Text)

    # selectin: Collection wird mitgeladen, damit async kein Lazy-Load braucht
    attached_agents: Mapped[list[Agent]] = relationship(
        secondary=knowledge_file_agents,
        lazy="selectin",
    )

    sync_status: Mapped[SyncStatus] = mapped_column(Enum(SyncStatus), default=SyncStatus.SYNCED)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "remote_id", name="uq_knowledge_files_owner_remote"),
    )

    def __init__(self, **kwargs):
        # Leere Collection setzen, damit neue Objekte nach dem Flush nicht nachladen
        kwargs.setdefault("attached_agents", [])
        super().__init__(**kwargs)

    @property
    def attached_agent_ids(self) -> list[str]:
        """Remote-IDs der zugeordneten Agenten."""
        return [agent.remote_id for agent in self.attached_agents]

    def __repr__(self) -> str:
        return f"<KnowledgeFile {self.remote_id} '{self.filename}'>"
