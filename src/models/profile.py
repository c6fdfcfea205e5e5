"""Profile model type definitions for database operations."""

from typing import TypedDict
from uuid import UUID


class Profile(TypedDict, total=False):
    """Subset of the profiles table row read by messaging.

    Profiles are owned by the account screens; messaging only reads the
    display columns.
    """

    user_id: UUID
    first_name: str | None
    last_name: str | None
    email: str | None
    avatar_url: str | None
