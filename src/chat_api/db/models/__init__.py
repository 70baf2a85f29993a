from .conversation import Conversation
from .message import Message, MessageRole, MessageStatus
from .subscription import SubscriptionStatus, SubscriptionTier
from .usage_record import UsageRecord, UsageType
from .user import User

__all__ = (
    "Conversation",
    "Message",
    "MessageRole",
    "MessageStatus",
    "SubscriptionStatus",
    "SubscriptionTier",
    "UsageRecord",
    "UsageType",
    "User",
)
