"""Message model type definitions for database operations."""

from datetime import datetime
from enum import Enum
from typing import TypedDict
from uuid import UUID


class MessageType(str, Enum):
    """Message type values matching database check constraint."""

    TEXT = "text"
    FILE = "file"


class Message(TypedDict):
    """Message table row representation.

    Represents a message stored in the messages table. ``is_read`` and
    ``read_at`` are the only columns updated after insert.
    """

    id: UUID
    conversation_id: UUID
    sender_id: UUID
    receiver_id: UUID
    content: str
    message_type: MessageType
    file_url: str | None
    file_name: str | None
    file_type: str | None
    file_size: int | None
    is_read: bool
    read_at: datetime | None
    created_at: datetime


class MessageCreate(TypedDict, total=False):
    """Data required to create a new message."""

    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    message_type: str
    file_url: str | None
    file_name: str | None
    file_type: str | None
    file_size: int | None


class MessageReadUpdate(TypedDict):
    """Read flags written by the read-state tracker."""

    is_read: bool
    read_at: str
