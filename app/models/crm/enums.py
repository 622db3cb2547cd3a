import enum


class ConversationStatus(enum.Enum):
    open = "open"
    pending = "pending"
    closed = "closed"


class MessageStatus(enum.Enum):
    sent = "sent"
    delivered = "delivered"
    read = "read"
    failed = "failed"


class MessageType(enum.Enum):
    text = "text"
    image = "image"
    video = "video"
    audio = "audio"
    file = "file"
    location = "location"
    postback = "postback"
    quick_reply = "quick_reply"
    template = "template"
    fallback = "fallback"
