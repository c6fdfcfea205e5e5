"""Conversation Pydantic schemas for API request/response models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ConversationCreate(BaseModel):
    """Schema for starting (or resuming) a conversation with another user."""

    model_config = ConfigDict(from_attributes=True)

    other_user_id: UUID = Field(description="The user to talk to")
    application_id: UUID | None = Field(default=None, description="Application the chat was started from")
    grant_id: UUID | None = Field(default=None, description="Grant or position the chat was started from")


class ConversationResponse(BaseModel):
    """A conversation row validated at the store boundary."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: UUID = Field(description="Conversation unique identifier")
    participant1_id: UUID = Field(description="First participant")
    participant2_id: UUID = Field(description="Second participant")
    application_id: UUID | None = Field(default=None, description="Originating application")
    grant_id: UUID | None = Field(default=None, description="Originating grant or position")
    last_message_preview: str | None = Field(default=None, description="Truncated text of the latest message")
    last_message_at: datetime | None = Field(default=None, description="Creation time of the latest message")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime | None = Field(default=None, description="Last update timestamp")

    @model_validator(mode="after")
    def check_distinct_participants(self) -> "ConversationResponse":
        """Reject rows whose two participants are the same user."""
        if self.participant1_id == self.participant2_id:
            raise ValueError("conversation participants must differ")
        return self

    def has_participant(self, user_id: UUID) -> bool:
        """Check whether a user is one of the two participants."""
        return user_id in (self.participant1_id, self.participant2_id)

    def other_participant(self, user_id: UUID) -> UUID:
        """Return the participant that is not ``user_id``.

        Raises:
            ValueError: If ``user_id`` is not a participant.
        """
        if user_id == self.participant1_id:
            return self.participant2_id
        if user_id == self.participant2_id:
            return self.participant1_id
        raise ValueError(f"{user_id} is not a participant of conversation {self.id}")


class GetOrCreateConversationResponse(BaseModel):
    """Schema for the get-or-create response."""

    model_config = ConfigDict(from_attributes=True)

    conversation_id: UUID = Field(description="The canonical conversation for the pair")
    created: bool = Field(description="True if this call created the conversation")


class ConversationListEntry(BaseModel):
    """Conversation as shown in the caller's conversation list."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Conversation unique identifier")
    other_user_id: UUID = Field(description="The participant that is not the caller")
    name: str = Field(default="Unknown", description="Display name of the other participant")
    email: str = Field(default="", description="Email of the other participant")
    avatar_url: str | None = Field(default=None, description="Avatar of the other participant")
    last_message_preview: str = Field(default="", description="Truncated text of the latest message")
    last_message_at: datetime | None = Field(default=None, description="Time of the latest message")
    unread_count: int = Field(default=0, ge=0, description="Messages to the caller not yet read")
    application_id: UUID | None = Field(default=None, description="Originating application")
    grant_id: UUID | None = Field(default=None, description="Originating grant or position")


class ConversationListResponse(BaseModel):
    """Schema for the conversation list response."""

    model_config = ConfigDict(from_attributes=True)

    conversations: list[ConversationListEntry] = Field(description="Conversations, most recent first")


class UnreadCountResponse(BaseModel):
    """Total unread messages addressed to the caller."""

    model_config = ConfigDict(from_attributes=True)

    unread_count: int = Field(ge=0, description="Unread messages across all conversations")
