"""Read-state tracking for received messages."""

import logging
from datetime import datetime, timezone
from uuid import UUID

from src.core.change_feed import ChangeFeed, get_change_feed
from src.schemas.feed import ChangeType
from src.services.message_store import MessageStore

logger = logging.getLogger(__name__)


class ReadStateService:
    """Marks messages read on behalf of their receiver."""

    def __init__(
        self,
        message_store: MessageStore | None = None,
        feed: ChangeFeed | None = None,
    ) -> None:
        """Initialize read-state service with message store and change feed."""
        self.message_store = message_store or MessageStore()
        self.feed = feed or get_change_feed()

    async def mark_conversation_read(
        self, conversation_id: UUID, reader_id: UUID, up_to: datetime | None = None
    ) -> int:
        """Mark every unread message addressed to ``reader_id`` as read.

        Messages the reader sent are never touched, and messages already
        read keep their original ``read_at``. Calling this twice in a row
        returns 0 the second time.

        Args:
            conversation_id: The conversation being read.
            reader_id: The user reading it.
            up_to: Only messages created at or before this time are marked.

        Returns:
            int: Number of messages flipped to read.
        """
        read_at = datetime.now(timezone.utc)
        updated = await self.message_store.mark_read(
            conversation_id, reader_id, read_at, up_to=up_to
        )

        for message in updated:
            self.feed.publish_message(ChangeType.UPDATE, message)

        if updated:
            logger.debug(
                "Marked %d messages read in conversation %s for %s",
                len(updated),
                conversation_id,
                reader_id,
            )
        return len(updated)
