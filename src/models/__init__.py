"""Database model type definitions."""

from src.models.conversation import Conversation, ConversationCreate, ConversationPreviewUpdate, make_pair_key
from src.models.message import Message, MessageCreate, MessageType
from src.models.profile import Profile

__all__ = [
    "Conversation",
    "ConversationCreate",
    "ConversationPreviewUpdate",
    "make_pair_key",
    "Message",
    "MessageCreate",
    "MessageType",
    "Profile",
]
