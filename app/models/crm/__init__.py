from app.models.crm.conversation import Conversation, Message
from app.models.crm.enums import ConversationStatus, MessageStatus, MessageType
from app.models.crm.page import PageCredential

__all__ = [
    "Conversation",
    "ConversationStatus",
    "Message",
    "MessageStatus",
    "MessageType",
    "PageCredential",
]
