from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.crm.enums import ConversationStatus, MessageStatus, MessageType


class ConversationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    page_id: str
    customer_id: str
    customer_name: str
    customer_profile_pic: str | None = None
    last_message_at: datetime
    last_message_text: str | None = None
    unread_count: int
    status: ConversationStatus
    assigned_agent_id: str | None = None
    tags: list[str] | None = None
    notes: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ConversationUpdate(BaseModel):
    status: ConversationStatus | None = None
    assigned_agent_id: str | None = Field(default=None, max_length=64)
    tags: list[str] | None = None
    notes: str | None = None


class MessageReference(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    message_id: str
    text: str | None = None


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    message_id: str
    conversation_id: UUID
    sender_id: str
    sender_name: str | None = None
    sender_profile_pic: str | None = None
    text: str | None = None
    attachments: list[dict] | None = None
    timestamp: datetime
    is_from_page: bool
    message_type: MessageType
    status: MessageStatus
    agent_id: str | None = None
    read_at: datetime | None = None
    reply_to: MessageReference | None = None
    metadata_: dict | None = Field(default=None, serialization_alias="metadata")
    created_at: datetime


# ---------------------------------------------------------------------------
# Live (Graph-backed) views
# ---------------------------------------------------------------------------


class ParticipantInfo(BaseModel):
    id: str | None = None
    name: str = "Unknown User"
    first_name: str | None = None
    last_name: str | None = None
    profile_pic: str | None = None


class LastMessagePreview(BaseModel):
    text: str
    created_time: str | None = None
    from_id: str | None = None


class EnrichedConversation(BaseModel):
    id: str
    updated_time: str | None = None
    can_reply: bool | None = None
    is_subscribed: bool | None = None
    message_count: int | None = None
    unread_count: int | None = None
    participant: ParticipantInfo
    last_message: LastMessagePreview | None = None
    degraded: bool = False


class FetchedMessage(BaseModel):
    id: str
    text: str
    sender_id: str | None = None
    sender_name: str | None = None
    sender_profile_pic: str | None = None
    created_time: str | None = None
    attachments: list[dict] = Field(default_factory=list)
    is_from_page: bool = False


class SendMessageRequest(BaseModel):
    text: str = Field(min_length=1, max_length=2000)
    agent_id: str | None = Field(default=None, max_length=64)


class SendResult(BaseModel):
    message_id: str
    text: str
    timestamp: datetime
    is_from_page: bool = True
    status: MessageStatus = MessageStatus.sent
    confirmed: bool
    page_id: str | None = None
    recipient_id: str | None = None
    degraded_reason: str | None = None
