from app.models.crm import (  # noqa: F401
    Conversation,
    ConversationStatus,
    Message,
    MessageStatus,
    MessageType,
    PageCredential,
)
from app.models.webhook_dead_letter import WebhookDeadLetter  # noqa: F401
