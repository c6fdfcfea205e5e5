"""Client-side conversation list kept current from change events."""

from datetime import datetime, timezone
from uuid import UUID

from src.schemas.conversation import ConversationListEntry, ConversationResponse
from src.schemas.message import MessageResponse

PREVIEW_MAX_LENGTH = 100

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class ConversationListState:
    """The signed-in user's conversations, most recent first, with unread badges."""

    def __init__(self, user_id: UUID, preview_max_length: int = PREVIEW_MAX_LENGTH) -> None:
        self.user_id = user_id
        self.preview_max_length = preview_max_length
        self._entries: dict[UUID, ConversationListEntry] = {}
        self._counted_reads: set[UUID] = set()
        self._applied_inserts: set[UUID] = set()

    @property
    def entries(self) -> list[ConversationListEntry]:
        """Entries by latest message time; conversations without messages last."""
        return sorted(
            self._entries.values(),
            key=lambda e: e.last_message_at or _OLDEST,
            reverse=True,
        )

    @property
    def total_unread(self) -> int:
        return sum(e.unread_count for e in self._entries.values())

    def get(self, conversation_id: UUID) -> ConversationListEntry | None:
        return self._entries.get(conversation_id)

    def load(self, entries: list[ConversationListEntry]) -> None:
        """Replace the list with a fresh fetch."""
        self._entries = {entry.id: entry for entry in entries}
        self._counted_reads.clear()
        self._applied_inserts.clear()

    def on_message_inserted(
        self, message: MessageResponse, active_conversation_id: UUID | None = None
    ) -> bool:
        """Apply a new message to its conversation's entry.

        The entry moves to the top with the new preview. Its unread count
        grows only when the message is addressed to this user and the
        conversation is not the one on screen. A message no newer than the
        entry's latest one is already reflected in it and changes nothing.

        Returns:
            bool: False if the conversation is not in the list and must be re-fetched.
        """
        entry = self._entries.get(message.conversation_id)
        if entry is None:
            return False
        if message.id in self._applied_inserts:
            return True
        self._applied_inserts.add(message.id)
        if self._already_reflected(entry, message):
            return True

        unread = entry.unread_count
        if (
            message.receiver_id == self.user_id
            and not message.is_read
            and message.conversation_id != active_conversation_id
        ):
            unread += 1

        self._entries[entry.id] = entry.model_copy(
            update={
                "last_message_preview": message.content.strip()[: self.preview_max_length],
                "last_message_at": message.created_at,
                "unread_count": unread,
            }
        )
        return True

    def _already_reflected(self, entry: ConversationListEntry, message: MessageResponse) -> bool:
        if entry.last_message_at is None or message.created_at > entry.last_message_at:
            return False
        if message.created_at < entry.last_message_at:
            return True
        # Same instant: only the message the preview was built from
        preview = message.content.strip()[: self.preview_max_length]
        return entry.last_message_preview == preview

    def on_message_updated(self, message: MessageResponse) -> None:
        """Apply a read flip, lowering the unread count once per message."""
        if not message.is_read or message.receiver_id != self.user_id:
            return
        if message.id in self._counted_reads:
            return
        self._counted_reads.add(message.id)

        entry = self._entries.get(message.conversation_id)
        if entry is None:
            return
        self._entries[entry.id] = entry.model_copy(
            update={"unread_count": max(0, entry.unread_count - 1)}
        )

    def on_conversation_changed(self, conversation: ConversationResponse) -> bool:
        """Apply a conversation row change.

        Returns:
            bool: True if the conversation was not listed yet; the caller
            should re-fetch to get the other participant's profile.
        """
        if not conversation.has_participant(self.user_id):
            return False

        entry = self._entries.get(conversation.id)
        if entry is None:
            self._entries[conversation.id] = ConversationListEntry(
                id=conversation.id,
                other_user_id=conversation.other_participant(self.user_id),
                last_message_preview=conversation.last_message_preview or "",
                last_message_at=conversation.last_message_at,
                application_id=conversation.application_id,
                grant_id=conversation.grant_id,
            )
            return True

        if conversation.last_message_at and (
            entry.last_message_at is None or conversation.last_message_at >= entry.last_message_at
        ):
            self._entries[entry.id] = entry.model_copy(
                update={
                    "last_message_preview": conversation.last_message_preview or "",
                    "last_message_at": conversation.last_message_at,
                }
            )
        return False

    def mark_open(self, conversation_id: UUID) -> None:
        """Clear the badge of the conversation the user just opened."""
        entry = self._entries.get(conversation_id)
        if entry is not None:
            self._entries[conversation_id] = entry.model_copy(update={"unread_count": 0})

    def search(self, query: str) -> list[ConversationListEntry]:
        """Entries whose name, email or preview contains ``query``, ignoring case."""
        needle = query.strip().lower()
        if not needle:
            return self.entries
        return [
            entry
            for entry in self.entries
            if needle in entry.name.lower()
            or needle in entry.email.lower()
            or needle in entry.last_message_preview.lower()
        ]
