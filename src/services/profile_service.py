"""Participant profile lookups."""

from uuid import UUID

from supabase import Client

from src.core.supabase import execute, get_supabase_client, parse_row
from src.models.profile import Profile
from src.schemas.profile import ParticipantProfile

PROFILE_COLUMNS = "user_id, first_name, last_name, email, avatar_url"


class ProfileService:
    """Read-only access to participant display details."""

    def __init__(self, client: Client | None = None) -> None:
        """Initialize profile service with Supabase client."""
        self.client = client or get_supabase_client()

    async def get_profile(self, user_id: UUID) -> ParticipantProfile | None:
        """Get a profile by user ID.

        Args:
            user_id: The auth user ID.

        Returns:
            ParticipantProfile | None: The profile or None if not found.
        """
        profiles = await self.get_profiles([user_id])
        return profiles.get(user_id)

    async def get_profiles(self, user_ids: list[UUID]) -> dict[UUID, ParticipantProfile]:
        """Get profiles for several users in one query.

        Users without a profile row are simply absent from the result.

        Args:
            user_ids: Auth user IDs to look up.

        Returns:
            dict: User ID to profile.
        """
        unique_ids = sorted({str(user_id) for user_id in user_ids})
        if not unique_ids:
            return {}

        response = execute(
            self.client.table("profiles").select(PROFILE_COLUMNS).in_("user_id", unique_ids),
            "load profiles",
        )

        rows: list[Profile] = response.data or []
        profiles = [parse_row(ParticipantProfile, row, "profile") for row in rows]
        return {profile.user_id: profile for profile in profiles}
