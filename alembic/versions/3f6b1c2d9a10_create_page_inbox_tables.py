"""Create page inbox tables.

Revision ID: 3f6b1c2d9a10
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f6b1c2d9a10"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    conversationstatus = sa.Enum("open", "pending", "closed", name="conversationstatus")
    messagestatus = sa.Enum("sent", "delivered", "read", "failed", name="messagestatus")
    messagetype = sa.Enum(
        "text",
        "image",
        "video",
        "audio",
        "file",
        "location",
        "postback",
        "quick_reply",
        "template",
        "fallback",
        name="messagetype",
    )

    op.create_table(
        "meta_page_credentials",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("page_id", sa.String(length=64), nullable=False),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column("page_name", sa.String(length=255), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("picture_url", sa.String(length=1024), nullable=True),
        sa.Column("category", sa.String(length=255), nullable=True),
        sa.Column("about", sa.Text(), nullable=True),
        sa.Column("website", sa.String(length=512), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("webhook_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disconnected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.UniqueConstraint("page_id", name="uq_meta_page_credentials_page_id"),
    )
    op.create_index(
        "ix_meta_page_credentials_account_active",
        "meta_page_credentials",
        ["account_id", "is_active"],
    )

    op.create_table(
        "meta_conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "page_id",
            sa.String(length=64),
            sa.ForeignKey("meta_page_credentials.page_id"),
            nullable=False,
        ),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=False, server_default="Unknown User"),
        sa.Column("customer_profile_pic", sa.String(length=1024), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_message_text", sa.Text(), nullable=True),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", conversationstatus, nullable=False, server_default="open"),
        sa.Column("assigned_agent_id", sa.String(length=64), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.CheckConstraint("unread_count >= 0", name="ck_meta_conversations_unread_non_negative"),
    )
    # At most one active session per (page, customer); concurrent creators race on this index.
    op.create_index(
        "uq_meta_conversations_active_customer",
        "meta_conversations",
        ["page_id", "customer_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index(
        "ix_meta_conversations_page_last_message",
        "meta_conversations",
        ["page_id", "last_message_at"],
    )

    op.create_table(
        "meta_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("message_id", sa.String(length=255), nullable=False),
        sa.Column(
            "conversation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("meta_conversations.id"),
            nullable=False,
        ),
        sa.Column(
            "reply_to_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("meta_messages.id"),
            nullable=True,
        ),
        sa.Column("sender_id", sa.String(length=64), nullable=False),
        sa.Column("sender_name", sa.String(length=255), nullable=True),
        sa.Column("sender_profile_pic", sa.String(length=1024), nullable=True),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_from_page", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("message_type", messagetype, nullable=False, server_default="text"),
        sa.Column("status", messagestatus, nullable=False, server_default="sent"),
        sa.Column("agent_id", sa.String(length=64), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.UniqueConstraint("message_id", name="uq_meta_messages_message_id"),
    )
    op.create_index(
        "ix_meta_messages_conversation_timestamp",
        "meta_messages",
        ["conversation_id", "timestamp"],
    )

    op.create_table(
        "webhook_dead_letters",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("channel", sa.String(length=40), nullable=False),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("message_id", sa.String(length=255), nullable=True),
        sa.Column("raw_payload", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_webhook_dead_letters_channel_created",
        "webhook_dead_letters",
        ["channel", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_webhook_dead_letters_channel_created", table_name="webhook_dead_letters")
    op.drop_table("webhook_dead_letters")
    op.drop_index("ix_meta_messages_conversation_timestamp", table_name="meta_messages")
    op.drop_table("meta_messages")
    op.drop_index("ix_meta_conversations_page_last_message", table_name="meta_conversations")
    op.drop_index("uq_meta_conversations_active_customer", table_name="meta_conversations")
    op.drop_table("meta_conversations")
    op.drop_index("ix_meta_page_credentials_account_active", table_name="meta_page_credentials")
    op.drop_table("meta_page_credentials")
    sa.Enum(name="messagetype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="messagestatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="conversationstatus").drop(op.get_bind(), checkfirst=True)
