"""Initiale Datenbank-Struktur: gespiegelte Plattform-Ressourcen.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum-Typen werden einmal angelegt und von allen Tabellen geteilt
syncstatus = postgresql.ENUM("SYNCED", "PENDING", "ERROR", name="syncstatus", create_type=False)
phoneprovider = postgresql.ENUM("TWILIO", "EXOTEL", "OTHER", name="phoneprovider", create_type=False)


def _sync_columns() -> list[sa.Column]:
    return [
        sa.Column("sync_status", syncstatus, nullable=False, server_default="SYNCED"),
        sa.Column("last_synced_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    syncstatus.create(op.get_bind(), checkfirst=True)
    phoneprovider.create(op.get_bind(), checkfirst=True)

    # Agents
    op.create_table(
        "agents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("remote_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("description", sa.Text()),
        sa.Column("use_case", sa.String(100)),
        sa.Column("llm", sa.String(100)),
        sa.Column("voice", sa.String(100)),
        sa.Column("web_search", sa.Boolean(), server_default=sa.false()),
        sa.Column("post_call", sa.String(50)),
        sa.Column("integrations", sa.JSON()),
        sa.Column("outgoing", sa.Boolean(), server_default=sa.false()),
        sa.Column("knowledge_base_file_count", sa.Integer(), server_default="0"),
        *_sync_columns(),
        sa.UniqueConstraint("owner_id", "remote_id", name="uq_agents_owner_remote"),
    )
    op.create_index("ix_agents_owner_name", "agents", ["owner_id", "name"])

    # Phone Numbers
    op.create_table(
        "phone_numbers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("remote_id", sa.String(64), nullable=False),
        sa.Column("number", sa.String(50), nullable=False),
        sa.Column("label", sa.String(255)),
        sa.Column("provider", phoneprovider, server_default="OTHER"),
        sa.Column("country", sa.String(10)),
        sa.Column("status", sa.String(30), server_default="Active"),
        sa.Column("capabilities", sa.JSON()),
        sa.Column(
            "attached_agent_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agents.id", ondelete="SET NULL"),
        ),
        *_sync_columns(),
        sa.UniqueConstraint("owner_id", "remote_id", name="uq_phone_numbers_owner_remote"),
    )
    op.create_index("ix_phone_numbers_attached_agent", "phone_numbers", ["attached_agent_id"])

    # Knowledge Files + Zuordnung zu Agenten
    op.create_table(
        "knowledge_files",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("remote_id", sa.String(64), nullable=False),
        sa.Column("filename", sa.String(500), nullable=False),
        sa.Column("original_name", sa.String(500)),
        sa.Column("size", sa.Integer(), server_default="0"),
        sa.Column("mime_type", sa.String(100), server_default="application/pdf"),
        sa.Column("url", sa.Text()),
        sa.Column("storage_path", sa.Text()),
        *_sync_columns(),
        sa.UniqueConstraint("owner_id", "remote_id", name="uq_knowledge_files_owner_remote"),
    )
    op.create_table(
        "knowledge_file_agents",
        sa.Column(
            "file_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("knowledge_files.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "agent_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agents.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    # Kampagnen + Anruf-Zeilen
    op.create_table(
        "campaigns",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("remote_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("status", sa.String(50)),
        sa.Column(
            "agent_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agents.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "phone_number_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("phone_numbers.id", ondelete="SET NULL"),
        ),
        sa.Column("bot_name", sa.String(255)),
        sa.Column("from_number", sa.String(50)),
        sa.Column("total_calls", sa.Integer(), server_default="0"),
        sa.Column("completed_calls", sa.Integer(), server_default="0"),
        sa.Column("picked_up_calls", sa.Integer(), server_default="0"),
        sa.Column("failed_calls", sa.Integer(), server_default="0"),
        sa.Column("total_cost", sa.Float(), server_default="0"),
        sa.Column("progress_percent", sa.Integer(), server_default="0"),
        *_sync_columns(),
        sa.UniqueConstraint("owner_id", "remote_id", name="uq_campaigns_owner_remote"),
    )
    op.create_index("ix_campaigns_owner_created", "campaigns", ["owner_id", "created_at"])

    op.create_table(
        "campaign_lines",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "campaign_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("remote_call_id", sa.String(64)),
        sa.Column("to_number", sa.String(50), nullable=False),
        sa.Column("normalized_to", sa.String(20)),
        sa.Column("call_status", sa.String(50)),
        sa.Column("duration", sa.Integer(), server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "uq_campaign_lines_campaign_call",
        "campaign_lines",
        ["campaign_id", "remote_call_id"],
        unique=True,
        postgresql_where=sa.text("remote_call_id IS NOT NULL"),
    )
    op.create_index("ix_campaign_lines_campaign_to", "campaign_lines", ["campaign_id", "to_number"])
    op.create_index("ix_campaign_lines_remote_call", "campaign_lines", ["remote_call_id"])
    op.create_index("ix_campaign_lines_normalized_to", "campaign_lines", ["normalized_to"])

    # Anruf-Logs
    op.create_table(
        "call_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("remote_id", sa.String(64), nullable=False),
        sa.Column("source", sa.String(50)),
        sa.Column("to_number", sa.String(50)),
        sa.Column("normalized_source", sa.String(20)),
        sa.Column("normalized_to", sa.String(20)),
        sa.Column("duration", sa.Integer(), server_default="0"),
        sa.Column("call_type", sa.String(50)),
        sa.Column("status", sa.String(50), server_default="completed"),
        sa.Column("cost", sa.Float(), server_default="0"),
        sa.Column("cqs_score", sa.Float()),
        sa.Column("transcript", sa.Text()),
        sa.Column("recording_url", sa.Text()),
        sa.Column("call_time", sa.DateTime(timezone=True)),
        sa.Column(
            "agent_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agents.id", ondelete="SET NULL"),
        ),
        sa.Column("bot_name", sa.String(255)),
        sa.Column("call_request_id", sa.String(64)),
        sa.Column("campaign_name", sa.String(255)),
        sa.Column(
            "campaign_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("campaigns.id", ondelete="SET NULL"),
        ),
        *_sync_columns(),
        sa.UniqueConstraint("owner_id", "remote_id", name="uq_call_records_owner_remote"),
    )
    op.create_index("ix_call_records_owner_call_time", "call_records", ["owner_id", "call_time"])
    op.create_index("ix_call_records_agent", "call_records", ["agent_id"])
    op.create_index("ix_call_records_call_request", "call_records", ["call_request_id"])


def downgrade() -> None:
    op.drop_table("call_records")
    op.drop_table("campaign_lines")
    op.drop_table("campaigns")
    op.drop_table("knowledge_file_agents")
    op.drop_table("knowledge_files")
    op.drop_table("phone_numbers")
    op.drop_table("agents")

    # Enums löschen
    op.execute("DROP TYPE IF EXISTS phoneprovider")
    op.execute("DROP TYPE IF EXISTS syncstatus")
