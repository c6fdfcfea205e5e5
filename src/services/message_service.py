"""Message delivery: validation, persistence, preview upkeep and publishing."""

import asyncio
import logging
from uuid import UUID
from weakref import WeakValueDictionary

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.api.middleware.error_handler import (
    AuthorizationError,
    InvalidContentError,
    NotFoundError,
    StorageUnavailableError,
)
from src.core.change_feed import ChangeFeed, get_change_feed
from src.core.config import get_settings
from src.models.message import MessageType
from src.schemas.conversation import ConversationResponse
from src.schemas.feed import ChangeType
from src.schemas.message import FileMetadata, MessageResponse
from src.services.conversation_store import ConversationStore
from src.services.message_store import MessageStore

logger = logging.getLogger(__name__)

# Preview retry backoff (seconds)
MIN_WAIT_SECONDS = 0.1
MAX_WAIT_SECONDS = 1

# One lock per live conversation, shared by every service instance in the process.
_conversation_locks: "WeakValueDictionary[UUID, asyncio.Lock]" = WeakValueDictionary()


def _conversation_lock(conversation_id: UUID) -> asyncio.Lock:
    lock = _conversation_locks.get(conversation_id)
    if lock is None:
        lock = asyncio.Lock()
        _conversation_locks[conversation_id] = lock
    return lock


def make_preview(content: str, max_length: int) -> str:
    """Trim content and cut it to ``max_length`` characters, no ellipsis."""
    return content.strip()[:max_length]


class MessageService:
    """Accepts messages from participants and stores them."""

    def __init__(
        self,
        conversation_store: ConversationStore | None = None,
        message_store: MessageStore | None = None,
        feed: ChangeFeed | None = None,
    ) -> None:
        """Initialize message service with stores and change feed."""
        self.conversation_store = conversation_store or ConversationStore()
        self.message_store = message_store or MessageStore()
        self.feed = feed or get_change_feed()
        self.settings = get_settings()

    def _validate_content(
        self, content: str, message_type: MessageType, file: FileMetadata | None
    ) -> str:
        text = content.strip()
        if not text:
            raise InvalidContentError()
        if len(text) > self.settings.message_max_length:
            raise InvalidContentError(
                f"Message content exceeds {self.settings.message_max_length} characters"
            )
        if message_type == MessageType.FILE and (file is None or not file.url):
            raise InvalidContentError("File messages require a file URL")
        return text

    async def send_message(
        self,
        sender_id: UUID,
        conversation_id: UUID,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        file: FileMetadata | None = None,
    ) -> MessageResponse:
        """Send a message into a conversation.

        The message row is written first. The conversation preview is
        updated afterwards and a failure there does not fail the send.

        Args:
            sender_id: The sending user.
            conversation_id: Target conversation.
            content: Message text; stored trimmed.
            message_type: Text or file.
            file: Attachment details for file messages.

        Returns:
            MessageResponse: The stored message.

        Raises:
            NotFoundError: If the conversation does not exist.
            AuthorizationError: If the sender is not a participant.
            InvalidContentError: If the content is blank or too long, or a file is missing.
            StorageUnavailableError: If the message could not be stored.
        """
        conversation = await self.conversation_store.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if not conversation.has_participant(sender_id):
            raise AuthorizationError()

        text = self._validate_content(content, message_type, file)
        receiver_id = conversation.other_participant(sender_id)

        async with _conversation_lock(conversation_id):
            message = await self.message_store.append(
                conversation_id,
                sender_id,
                receiver_id,
                text,
                message_type=message_type,
                file=file if message_type == MessageType.FILE else None,
            )
            self.feed.publish_message(ChangeType.INSERT, message)
            await self._update_preview(conversation, message)

        return message

    async def _update_preview(
        self, conversation: ConversationResponse, message: MessageResponse
    ) -> None:
        preview = make_preview(message.content, self.settings.message_preview_max_length)
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.preview_update_max_attempts),
                wait=wait_exponential(multiplier=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
                retry=retry_if_exception_type(StorageUnavailableError),
                reraise=True,
            ):
                with attempt:
                    updated = await self.conversation_store.update_preview(
                        conversation.id, preview, message.created_at
                    )
        except StorageUnavailableError as e:
            # The message is already stored; the preview catches up on the next send.
            logger.error(
                "Preview update failed for conversation %s after message %s: %s",
                conversation.id,
                message.id,
                e.message,
            )
            return

        if updated is not None:
            self.feed.publish_conversation(ChangeType.UPDATE, updated)
