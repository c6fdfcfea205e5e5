"""Messaging operations exposed to authenticated users."""

import logging
from uuid import UUID

from src.api.middleware.error_handler import (
    AuthorizationError,
    NotFoundError,
    StorageUnavailableError,
)
from src.core.change_feed import ChangeFeed, get_change_feed
from src.models.message import MessageType
from src.schemas.conversation import ConversationListEntry, ConversationResponse
from src.schemas.message import FileMetadata, MessageResponse, MessageWithSender
from src.schemas.profile import SenderSummary
from src.services.conversation_resolver import ConversationResolver
from src.services.conversation_store import ConversationStore
from src.services.message_service import MessageService
from src.services.message_store import MessageStore
from src.services.profile_service import ProfileService
from src.services.read_state_service import ReadStateService

logger = logging.getLogger(__name__)


class MessagingService:
    """Entry point for every messaging operation a user can perform.

    Each operation checks that the caller takes part in the conversation
    before touching it; the database client runs with the service key
    and does not enforce row access itself.
    """

    def __init__(
        self,
        conversation_store: ConversationStore | None = None,
        message_store: MessageStore | None = None,
        profile_service: ProfileService | None = None,
        feed: ChangeFeed | None = None,
    ) -> None:
        """Initialize messaging service and its collaborators."""
        self.feed = feed or get_change_feed()
        self.conversation_store = conversation_store or ConversationStore()
        self.message_store = message_store or MessageStore()
        self.profile_service = profile_service or ProfileService()
        self.resolver = ConversationResolver(self.conversation_store, self.feed)
        self.message_service = MessageService(self.conversation_store, self.message_store, self.feed)
        self.read_state = ReadStateService(self.message_store, self.feed)

    async def _require_participant(self, conversation_id: UUID, user_id: UUID) -> ConversationResponse:
        conversation = await self.conversation_store.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if not conversation.has_participant(user_id):
            logger.warning("User %s denied access to conversation %s", user_id, conversation_id)
            raise AuthorizationError()
        return conversation

    async def list_conversations(self, user_id: UUID) -> list[ConversationListEntry]:
        """List the user's conversations, most recent first.

        Args:
            user_id: The requesting user.

        Returns:
            list[ConversationListEntry]: Entries with the other participant and unread counts.
        """
        conversations = await self.conversation_store.list_for_user(user_id)
        if not conversations:
            return []

        unread = await self.message_store.count_unread(user_id, [c.id for c in conversations])
        other_ids = [c.other_participant(user_id) for c in conversations]
        profiles = await self.profile_service.get_profiles(other_ids)

        entries = []
        for conversation, other_id in zip(conversations, other_ids):
            profile = profiles.get(other_id)
            entries.append(
                ConversationListEntry(
                    id=conversation.id,
                    other_user_id=other_id,
                    name=profile.display_name if profile else "Unknown",
                    email=(profile.email or "") if profile else "",
                    avatar_url=profile.avatar_url if profile else None,
                    last_message_preview=conversation.last_message_preview or "",
                    last_message_at=conversation.last_message_at,
                    unread_count=unread.get(conversation.id, 0),
                    application_id=conversation.application_id,
                    grant_id=conversation.grant_id,
                )
            )
        return entries

    async def get_or_create_conversation(
        self,
        user_id: UUID,
        other_user_id: UUID,
        application_id: UUID | None = None,
        grant_id: UUID | None = None,
    ) -> tuple[ConversationResponse, bool]:
        """Get the conversation with another user, creating it if needed."""
        return await self.resolver.get_or_create_conversation(
            user_id, other_user_id, application_id=application_id, grant_id=grant_id
        )

    async def fetch_messages(self, conversation_id: UUID, user_id: UUID) -> list[MessageWithSender]:
        """Fetch a conversation's messages and mark them read for the caller.

        Messages are returned as they were before the read update, so a
        message that was unread when fetched reports ``is_read=False``.
        Only messages up to the newest one returned are marked read.
        A failure while marking read is logged and does not fail the fetch.

        Args:
            conversation_id: The conversation to read.
            user_id: The requesting user.

        Returns:
            list[MessageWithSender]: Messages oldest first with sender details.

        Raises:
            NotFoundError: If the conversation does not exist.
            AuthorizationError: If the user is not a participant.
        """
        conversation = await self._require_participant(conversation_id, user_id)

        messages = list(self.message_store.list_by_conversation(conversation_id))
        profiles = await self.profile_service.get_profiles(
            [conversation.participant1_id, conversation.participant2_id]
        )

        result = []
        for message in messages:
            profile = profiles.get(message.sender_id)
            sender = (
                SenderSummary(
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    avatar_url=profile.avatar_url,
                )
                if profile
                else None
            )
            result.append(MessageWithSender(**message.model_dump(), sender=sender))

        if not messages:
            return result

        # Messages that arrived after the snapshot stay unread
        try:
            await self.read_state.mark_conversation_read(
                conversation_id, user_id, up_to=messages[-1].created_at
            )
        except StorageUnavailableError as e:
            logger.error(
                "Could not mark conversation %s read for %s: %s", conversation_id, user_id, e.message
            )

        return result

    async def send_message(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        file: FileMetadata | None = None,
    ) -> MessageResponse:
        """Send a message as ``sender_id``."""
        return await self.message_service.send_message(
            sender_id, conversation_id, content, message_type=message_type, file=file
        )

    async def mark_conversation_read(self, conversation_id: UUID, user_id: UUID) -> int:
        """Mark the caller's received messages in a conversation as read.

        Raises:
            NotFoundError: If the conversation does not exist.
            AuthorizationError: If the user is not a participant.
        """
        await self._require_participant(conversation_id, user_id)
        return await self.read_state.mark_conversation_read(conversation_id, user_id)

    async def unread_count(self, user_id: UUID) -> int:
        """Total unread messages addressed to the user across conversations."""
        counts = await self.message_store.count_unread(user_id)
        return sum(counts.values())
