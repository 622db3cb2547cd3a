"""Meta Page webhook payload schemas.

The envelope (``MetaWebhookPayload``/``MetaWebhookEntry``) is validated as a
whole, but messaging events are kept raw and parsed one at a time with
``MetaMessagingEvent`` so a malformed event cannot sink its siblings.
"""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MessagingEventKind(enum.Enum):
    message = "message"
    delivery = "delivery"
    read = "read"
    postback = "postback"


class MessagingParty(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str = Field(min_length=1)


class MessageAttachmentPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "fallback"
    payload: dict | None = None


class MessagePart(BaseModel):
    model_config = ConfigDict(extra="allow")

    mid: str = Field(min_length=1)
    text: str | None = None
    attachments: list[MessageAttachmentPayload] = Field(default_factory=list)
    quick_reply: dict | None = None
    reply_to: dict | None = None
    is_echo: bool = False


class DeliveryPart(BaseModel):
    model_config = ConfigDict(extra="allow")

    mids: list[str] = Field(default_factory=list)
    watermark: int


class ReadPart(BaseModel):
    model_config = ConfigDict(extra="allow")

    watermark: int


class PostbackPart(BaseModel):
    model_config = ConfigDict(extra="allow")

    mid: str | None = None
    title: str | None = None
    payload: str | None = None


class MetaMessagingEvent(BaseModel):
    """A single messaging event within a Page webhook entry.

    At most one of ``message``, ``delivery``, ``read`` or ``postback`` is
    populated. Events with none of them (opt-ins, referrals, ...) parse but
    have no ``kind``.
    """

    model_config = ConfigDict(extra="allow")

    sender: MessagingParty
    recipient: MessagingParty
    timestamp: int | None = None
    message: MessagePart | None = None
    delivery: DeliveryPart | None = None
    read: ReadPart | None = None
    postback: PostbackPart | None = None

    @model_validator(mode="after")
    def _single_kind(self):
        populated = [kind for kind in MessagingEventKind if getattr(self, kind.value) is not None]
        if len(populated) > 1:
            raise ValueError(
                "messaging event carries more than one kind: " + ",".join(kind.value for kind in populated)
            )
        return self

    @property
    def kind(self) -> MessagingEventKind | None:
        for kind in MessagingEventKind:
            if getattr(self, kind.value) is not None:
                return kind
        return None


class MetaWebhookEntry(BaseModel):
    """A single entry (one Page) in a webhook payload."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str  # Page ID
    time: int | None = None
    messaging: list[dict] = Field(default_factory=list)


class MetaWebhookPayload(BaseModel):
    object: str
    entry: list[MetaWebhookEntry] = Field(default_factory=list)


class WebhookProcessResult(BaseModel):
    processed: int = 0
    skipped: int = 0
    duplicates: int = 0
    failed: int = 0
