"""Resolution of a user pair to its single conversation."""

import logging
from uuid import UUID

from src.api.middleware.error_handler import InvalidParticipantsError, StorageUnavailableError
from src.core.change_feed import ChangeFeed, get_change_feed
from src.schemas.conversation import ConversationResponse
from src.schemas.feed import ChangeType
from src.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


class ConversationResolver:
    """Finds or creates the conversation between two users.

    A pair of users shares exactly one conversation no matter which of
    them starts it or from which application or grant. The originating
    context is stored only on the row that gets created.
    """

    def __init__(
        self,
        store: ConversationStore | None = None,
        feed: ChangeFeed | None = None,
    ) -> None:
        """Initialize resolver with its store and change feed."""
        self.store = store or ConversationStore()
        self.feed = feed or get_change_feed()

    async def get_or_create_conversation(
        self,
        caller_id: UUID,
        other_user_id: UUID,
        application_id: UUID | None = None,
        grant_id: UUID | None = None,
    ) -> tuple[ConversationResponse, bool]:
        """Return the pair's conversation, creating it if needed.

        Args:
            caller_id: The requesting user.
            other_user_id: The user to talk to.
            application_id: Application the chat was started from.
            grant_id: Grant or position the chat was started from.

        Returns:
            tuple: The conversation and whether this call created it.

        Raises:
            InvalidParticipantsError: If both ids are the same user.
            StorageUnavailableError: If the store fails.
        """
        if caller_id == other_user_id:
            raise InvalidParticipantsError()

        existing = await self.store.find_by_participants(caller_id, other_user_id)
        if existing:
            return existing, False

        # A plain lookup-then-insert would let two first messages create two
        # rows; the insert is conditional on the pair_key constraint instead.
        created = await self.store.insert_if_absent(
            caller_id, other_user_id, application_id=application_id, grant_id=grant_id
        )

        conversation = await self.store.find_by_participants(caller_id, other_user_id)
        if conversation is None:
            raise StorageUnavailableError("Conversation could not be read back after insert")

        if created:
            logger.info(
                "Created conversation %s between %s and %s",
                conversation.id,
                conversation.participant1_id,
                conversation.participant2_id,
            )
            self.feed.publish_conversation(ChangeType.INSERT, conversation)

        return conversation, created
