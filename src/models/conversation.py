"""Conversation model type definitions for database operations."""

from datetime import datetime
from typing import TypedDict
from uuid import UUID


class Conversation(TypedDict):
    """Conversation table row representation.

    A conversation is the single channel between two participants.
    ``pair_key`` is the normalized unordered participant pair and carries
    the table's unique constraint.
    """

    id: UUID
    participant1_id: UUID
    participant2_id: UUID
    pair_key: str
    application_id: UUID | None
    grant_id: UUID | None
    last_message_preview: str | None
    last_message_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ConversationCreate(TypedDict, total=False):
    """Data required to create a new conversation."""

    participant1_id: str
    participant2_id: str
    pair_key: str
    application_id: str | None
    grant_id: str | None


class ConversationPreviewUpdate(TypedDict):
    """Denormalized preview fields maintained on new messages."""

    last_message_preview: str
    last_message_at: str


def make_pair_key(user_a: UUID | str, user_b: UUID | str) -> str:
    """Build the order-independent key for a participant pair.

    Args:
        user_a: One participant.
        user_b: The other participant.

    Returns:
        str: ``"<smaller>:<larger>"`` of the two ids.
    """
    first, second = sorted((str(user_a), str(user_b)))
    return f"{first}:{second}"
