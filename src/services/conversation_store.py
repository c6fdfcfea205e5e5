"""Conversation table access."""

from datetime import datetime
from uuid import UUID

from supabase import Client

from src.core.supabase import execute, get_supabase_client, parse_row
from src.models.conversation import Conversation, ConversationCreate, ConversationPreviewUpdate, make_pair_key
from src.schemas.conversation import ConversationResponse


class ConversationStore:
    """Reads and writes rows of the conversations table.

    The table's unique constraint on ``pair_key`` is what keeps a pair of
    users down to a single conversation; see ``insert_if_absent``.
    """

    TABLE = "conversations"

    def __init__(self, client: Client | None = None) -> None:
        """Initialize store with Supabase client."""
        self.client = client or get_supabase_client()

    def _parse(self, row: Conversation) -> ConversationResponse:
        return parse_row(ConversationResponse, row, "conversation")

    async def get(self, conversation_id: UUID) -> ConversationResponse | None:
        """Get a conversation by ID.

        Args:
            conversation_id: The conversation's UUID.

        Returns:
            ConversationResponse | None: The conversation or None if not found.
        """
        response = execute(
            self.client.table(self.TABLE)
            .select("*")
            .eq("id", str(conversation_id))
            .maybe_single(),
            "load conversation",
        )
        return self._parse(response.data) if response and response.data else None

    async def find_by_participants(
        self, user_a: UUID, user_b: UUID
    ) -> ConversationResponse | None:
        """Find the conversation between two users, in either order.

        Args:
            user_a: One participant.
            user_b: The other participant.

        Returns:
            ConversationResponse | None: The pair's conversation or None.
        """
        response = execute(
            self.client.table(self.TABLE)
            .select("*")
            .eq("pair_key", make_pair_key(user_a, user_b))
            .maybe_single(),
            "look up conversation",
        )
        return self._parse(response.data) if response and response.data else None

    def _row_for(
        self,
        user_a: UUID,
        user_b: UUID,
        application_id: UUID | None,
        grant_id: UUID | None,
    ) -> ConversationCreate:
        return {
            "participant1_id": str(user_a),
            "participant2_id": str(user_b),
            "pair_key": make_pair_key(user_a, user_b),
            "application_id": str(application_id) if application_id else None,
            "grant_id": str(grant_id) if grant_id else None,
        }

    async def create(
        self,
        user_a: UUID,
        user_b: UUID,
        application_id: UUID | None = None,
        grant_id: UUID | None = None,
    ) -> ConversationResponse:
        """Insert a conversation row.

        Fails with a storage error if the pair already has a conversation.
        Callers that may race should use ``insert_if_absent``.

        Returns:
            ConversationResponse: The created conversation.
        """
        response = execute(
            self.client.table(self.TABLE).insert(
                self._row_for(user_a, user_b, application_id, grant_id)
            ),
            "create conversation",
        )
        return self._parse(response.data[0])

    async def insert_if_absent(
        self,
        user_a: UUID,
        user_b: UUID,
        application_id: UUID | None = None,
        grant_id: UUID | None = None,
    ) -> bool:
        """Insert the pair's conversation unless one already exists.

        Issues ``INSERT ... ON CONFLICT (pair_key) DO NOTHING`` so the
        check and the write happen as one statement in the database.

        Returns:
            bool: True if this call inserted the row.
        """
        response = execute(
            self.client.table(self.TABLE).upsert(
                self._row_for(user_a, user_b, application_id, grant_id),
                on_conflict="pair_key",
                ignore_duplicates=True,
            ),
            "create conversation",
        )
        return bool(response.data)

    async def list_for_user(self, user_id: UUID) -> list[ConversationResponse]:
        """List a user's conversations, most recent message first.

        Conversations without messages sort last.
        """
        uid = str(user_id)
        response = execute(
            self.client.table(self.TABLE)
            .select("*")
            .or_(f"participant1_id.eq.{uid},participant2_id.eq.{uid}")
            .order("last_message_at", desc=True, nullsfirst=False),
            "list conversations",
        )
        return [self._parse(row) for row in response.data or []]

    async def update_preview(
        self, conversation_id: UUID, preview: str, timestamp: datetime
    ) -> ConversationResponse | None:
        """Store the latest message preview and time on a conversation.

        Returns:
            ConversationResponse | None: Updated conversation or None if it vanished.
        """
        update: ConversationPreviewUpdate = {
            "last_message_preview": preview,
            "last_message_at": timestamp.isoformat(),
        }
        response = execute(
            self.client.table(self.TABLE)
            .update(update)
            .eq("id", str(conversation_id)),
            "update conversation preview",
        )
        return self._parse(response.data[0]) if response.data else None
