from .chat import ChatController
from .conversations import ConversationController

__all__ = ("ChatController", "ConversationController")
