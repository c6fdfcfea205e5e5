"""Message Pydantic schemas for API request/response models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.models.message import MessageType
from src.schemas.profile import SenderSummary


class FileMetadata(BaseModel):
    """Attachment details for file messages."""

    model_config = ConfigDict(from_attributes=True)

    url: str = Field(..., min_length=1, description="Public or signed URL of the uploaded file")
    name: str | None = Field(default=None, max_length=255, description="Original file name")
    type: str | None = Field(default=None, max_length=255, description="MIME type")
    size: int | None = Field(default=None, ge=0, description="Size in bytes")


class MessageCreate(BaseModel):
    """Schema for sending a message.

    Blank content is rejected by the delivery service rather than here so
    that the API and in-process callers report the same error.
    """

    model_config = ConfigDict(from_attributes=True)

    content: str = Field(..., max_length=10000, description="Message content")
    message_type: MessageType = Field(default=MessageType.TEXT, description="Message type (text/file)")
    file: FileMetadata | None = Field(default=None, description="Attachment for file messages")


class MessageResponse(BaseModel):
    """A message row validated at the store boundary."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: UUID = Field(description="Message unique identifier")
    conversation_id: UUID = Field(description="Parent conversation ID")
    sender_id: UUID = Field(description="Participant that sent the message")
    receiver_id: UUID = Field(description="The other participant")
    content: str = Field(description="Message content")
    message_type: MessageType = Field(default=MessageType.TEXT, description="Message type (text/file)")
    file_url: str | None = Field(default=None, description="Attachment URL")
    file_name: str | None = Field(default=None, description="Attachment file name")
    file_type: str | None = Field(default=None, description="Attachment MIME type")
    file_size: int | None = Field(default=None, description="Attachment size in bytes")
    is_read: bool = Field(default=False, description="Whether the receiver has read the message")
    read_at: datetime | None = Field(default=None, description="When the receiver read the message")
    created_at: datetime = Field(description="Creation timestamp")

    @model_validator(mode="after")
    def check_invariants(self) -> "MessageResponse":
        """Reject rows that break the sender/receiver or read-state invariants."""
        if self.sender_id == self.receiver_id:
            raise ValueError("sender and receiver must differ")
        if self.is_read and self.read_at is None:
            raise ValueError("read messages must carry read_at")
        return self


class MessageWithSender(MessageResponse):
    """Message enriched with the sender's display details."""

    sender: SenderSummary | None = Field(default=None, description="Sender display details")


class MessageListResponse(BaseModel):
    """Schema for the full message list of a conversation."""

    model_config = ConfigDict(from_attributes=True)

    messages: list[MessageWithSender] = Field(description="Messages, oldest first")


class MarkReadResponse(BaseModel):
    """Result of marking a conversation read."""

    model_config = ConfigDict(from_attributes=True)

    updated: int = Field(ge=0, description="Messages flipped to read by this call")
