"""Message table access."""

from collections import Counter
from collections.abc import Iterator
from datetime import datetime
from uuid import UUID

from supabase import Client

from src.core.config import get_settings
from src.core.supabase import execute, get_supabase_client, parse_row
from src.models.message import Message, MessageCreate, MessageType
from src.schemas.message import FileMetadata, MessageResponse


class MessageSequence:
    """Messages of one conversation, oldest first, fetched page by page.

    Nothing is queried until iteration starts, and every new iteration
    starts again from the first message, so the sequence can be walked
    more than once and always reflects the current table contents.
    """

    def __init__(self, store: "MessageStore", conversation_id: UUID, page_size: int) -> None:
        self._store = store
        self.conversation_id = conversation_id
        self.page_size = page_size

    def __iter__(self) -> Iterator[MessageResponse]:
        offset = 0
        while True:
            rows = self._store._fetch_page(self.conversation_id, offset, self.page_size)
            for row in rows:
                yield self._store._parse(row)
            if len(rows) < self.page_size:
                return
            offset += self.page_size


class MessageStore:
    """Reads and writes rows of the messages table."""

    TABLE = "messages"

    def __init__(self, client: Client | None = None, page_size: int | None = None) -> None:
        """Initialize store with Supabase client."""
        self.client = client or get_supabase_client()
        self.page_size = page_size or get_settings().message_page_size

    def _parse(self, row: Message) -> MessageResponse:
        return parse_row(MessageResponse, row, "message")

    async def append(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        receiver_id: UUID,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        file: FileMetadata | None = None,
    ) -> MessageResponse:
        """Insert a message.

        ``created_at``, ``is_read`` and ``id`` are assigned by the database.

        Returns:
            MessageResponse: The stored message.
        """
        message_data: MessageCreate = {
            "conversation_id": str(conversation_id),
            "sender_id": str(sender_id),
            "receiver_id": str(receiver_id),
            "content": content,
            "message_type": message_type.value,
            "file_url": file.url if file else None,
            "file_name": file.name if file else None,
            "file_type": file.type if file else None,
            "file_size": file.size if file else None,
        }

        response = execute(self.client.table(self.TABLE).insert(message_data), "store message")
        return self._parse(response.data[0])

    async def get(self, message_id: UUID) -> MessageResponse | None:
        """Get a message by ID."""
        response = execute(
            self.client.table(self.TABLE)
            .select("*")
            .eq("id", str(message_id))
            .maybe_single(),
            "load message",
        )
        return self._parse(response.data) if response and response.data else None

    def list_by_conversation(self, conversation_id: UUID) -> MessageSequence:
        """Messages of a conversation ordered by creation time, ties by id."""
        return MessageSequence(self, conversation_id, self.page_size)

    def _fetch_page(self, conversation_id: UUID, offset: int, limit: int) -> list[Message]:
        response = execute(
            self.client.table(self.TABLE)
            .select("*")
            .eq("conversation_id", str(conversation_id))
            .order("created_at", desc=False)
            .order("id", desc=False)
            .range(offset, offset + limit - 1),
            "list messages",
        )
        return response.data or []

    async def mark_read(
        self,
        conversation_id: UUID,
        reader_id: UUID,
        read_at: datetime,
        up_to: datetime | None = None,
    ) -> list[MessageResponse]:
        """Flip unread messages addressed to ``reader_id`` to read.

        Only rows still unread are touched, so messages read earlier keep
        their original ``read_at``. With ``up_to``, messages created after
        it are left unread.

        Returns:
            list[MessageResponse]: The rows changed by this call.
        """
        query = (
            self.client.table(self.TABLE)
            .update({"is_read": True, "read_at": read_at.isoformat()})
            .eq("conversation_id", str(conversation_id))
            .eq("receiver_id", str(reader_id))
            .eq("is_read", False)
        )
        if up_to is not None:
            query = query.lte("created_at", up_to.isoformat())

        response = execute(query, "mark messages read")
        return [self._parse(row) for row in response.data or []]

    async def count_unread(
        self, user_id: UUID, conversation_ids: list[UUID] | None = None
    ) -> dict[UUID, int]:
        """Count unread messages addressed to a user, per conversation.

        Args:
            user_id: The receiving user.
            conversation_ids: Restrict the count to these conversations.

        Returns:
            dict: Conversation ID to unread count; conversations with none are absent.
        """
        if conversation_ids is not None and not conversation_ids:
            return {}

        query = (
            self.client.table(self.TABLE)
            .select("conversation_id")
            .eq("receiver_id", str(user_id))
            .eq("is_read", False)
        )
        if conversation_ids:
            query = query.in_("conversation_id", [str(cid) for cid in conversation_ids])

        response = execute(query, "count unread messages")
        counts = Counter(UUID(str(row["conversation_id"])) for row in response.data or [])
        return dict(counts)
