"""Change feed event schemas pushed to connected clients."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.schemas.common import utcnow


class FeedTable(str, Enum):
    """Tables whose row changes are published."""

    MESSAGES = "messages"
    CONVERSATIONS = "conversations"


class ChangeType(str, Enum):
    """Row-level change kinds."""

    INSERT = "insert"
    UPDATE = "update"


class ChangeEvent(BaseModel):
    """A row-level change delivered to subscribers.

    ``sequence`` increases by one for every event of the same
    conversation, so a client can spot gaps and re-fetch.
    ``event_id`` lets clients drop redelivered events.
    """

    model_config = ConfigDict(from_attributes=True)

    event_id: UUID = Field(default_factory=uuid4, description="Unique event identifier")
    table: FeedTable = Field(description="Table the row belongs to")
    type: ChangeType = Field(description="Insert or update")
    conversation_id: UUID = Field(description="Conversation the row belongs to")
    sequence: int = Field(default=0, ge=0, description="Per-conversation event sequence")
    record: dict[str, Any] = Field(description="The new row")
    participants: tuple[UUID, UUID] = Field(description="Users allowed to receive this event")
    occurred_at: datetime = Field(default_factory=utcnow, description="Publish time")

    def to_wire(self) -> dict[str, Any]:
        """Serialize for a client, omitting routing data."""
        return self.model_dump(mode="json", exclude={"participants"})


class FeedControl(BaseModel):
    """Out-of-band notice sent before the server drops a subscription."""

    model_config = ConfigDict(from_attributes=True)

    type: str = Field(default="resync", description="Control message kind")
    reason: str = Field(description="Why the client must re-fetch")
