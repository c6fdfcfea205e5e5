"""Participant profile schemas used by messaging responses."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ParticipantProfile(BaseModel):
    """Display identity of a conversation participant."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    user_id: UUID = Field(description="Auth user ID of the participant")
    first_name: str | None = Field(default=None, description="First name")
    last_name: str | None = Field(default=None, description="Last name")
    email: str | None = Field(default=None, description="Email address")
    avatar_url: str | None = Field(default=None, description="Avatar image URL")

    @property
    def full_name(self) -> str:
        """First and last name joined, empty when neither is set."""
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def display_name(self) -> str:
        """Name shown in lists: full name, then email, then 'Unknown'."""
        return self.full_name or self.email or "Unknown"


class SenderSummary(BaseModel):
    """Sender details attached to fetched messages."""

    model_config = ConfigDict(from_attributes=True)

    first_name: str | None = Field(default=None, description="First name")
    last_name: str | None = Field(default=None, description="Last name")
    avatar_url: str | None = Field(default=None, description="Avatar image URL")
