import enum


class AdminRole(str, enum.Enum):
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class ChatStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ADMIN_ACTIVE = "ADMIN_ACTIVE"
    ENDED = "ENDED"
    ABANDONED = "ABANDONED"


class MessageRole(str, enum.Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"
