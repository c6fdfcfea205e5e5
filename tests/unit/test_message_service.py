"""Unit tests for MessageService."""

import asyncio
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from src.api.middleware.error_handler import (
    AuthorizationError,
    InvalidContentError,
    NotFoundError,
    StorageUnavailableError,
)
from src.core.change_feed import ChangeFeed
from src.models.message import MessageType
from src.schemas.conversation import ConversationResponse
from src.schemas.feed import ChangeType, FeedTable
from src.schemas.message import FileMetadata
from src.services.conversation_resolver import ConversationResolver
from src.services.conversation_store import ConversationStore
from src.services.message_service import MessageService, make_preview
from src.services.message_store import MessageStore
from tests.fakes import OUTSIDER_ID, PROFESSOR_ID, STUDENT_ID, FakeSupabaseClient


@pytest.fixture
def message_service(
    conversation_store: ConversationStore, message_store: MessageStore, feed: ChangeFeed
) -> MessageService:
    return MessageService(conversation_store, message_store, feed)


@pytest_asyncio.fixture
async def conversation(conversation_store: ConversationStore, feed: ChangeFeed) -> ConversationResponse:
    resolver = ConversationResolver(conversation_store, feed)
    conversation, _ = await resolver.get_or_create_conversation(STUDENT_ID, PROFESSOR_ID)
    return conversation


class TestMakePreview:
    """Tests for preview derivation."""

    def test_trims_whitespace(self) -> None:
        assert make_preview("   hello there \n", 100) == "hello there"

    def test_truncates_without_ellipsis(self) -> None:
        preview = make_preview("x" * 150, 100)
        assert preview == "x" * 100

    def test_short_content_kept(self) -> None:
        assert make_preview("ok", 100) == "ok"


class TestSendMessage:
    """Tests for send_message."""

    @pytest.mark.asyncio
    async def test_stores_message_for_other_participant(
        self,
        message_service: MessageService,
        conversation: ConversationResponse,
        fake_db: FakeSupabaseClient,
    ) -> None:
        """Receiver is derived from the conversation, content stored trimmed."""
        message = await message_service.send_message(STUDENT_ID, conversation.id, "  Hello!  ")

        assert message.sender_id == STUDENT_ID
        assert message.receiver_id == PROFESSOR_ID
        assert message.content == "Hello!"
        assert message.is_read is False
        assert message.read_at is None
        assert len(fake_db.rows("messages")) == 1

    @pytest.mark.asyncio
    async def test_updates_conversation_preview(
        self,
        message_service: MessageService,
        conversation: ConversationResponse,
        conversation_store: ConversationStore,
    ) -> None:
        """Preview is the trimmed, truncated content and time is the message's."""
        content = "  " + "a" * 80 + " " + "b" * 80 + "  "

        message = await message_service.send_message(PROFESSOR_ID, conversation.id, content)
        stored = await conversation_store.get(conversation.id)

        assert stored is not None
        assert stored.last_message_preview == content.strip()[:100]
        assert len(stored.last_message_preview) == 100
        assert stored.last_message_at == message.created_at

    @pytest.mark.asyncio
    async def test_latest_message_wins_preview(
        self,
        message_service: MessageService,
        conversation: ConversationResponse,
        conversation_store: ConversationStore,
    ) -> None:
        await message_service.send_message(STUDENT_ID, conversation.id, "first")
        last = await message_service.send_message(PROFESSOR_ID, conversation.id, "second")

        stored = await conversation_store.get(conversation.id)

        assert stored.last_message_preview == "second"
        assert stored.last_message_at == last.created_at

    @pytest.mark.asyncio
    async def test_missing_conversation(self, message_service: MessageService) -> None:
        with pytest.raises(NotFoundError):
            await message_service.send_message(STUDENT_ID, uuid4(), "Hello")

    @pytest.mark.asyncio
    async def test_non_participant_rejected(
        self,
        message_service: MessageService,
        conversation: ConversationResponse,
        fake_db: FakeSupabaseClient,
    ) -> None:
        """A third user cannot post into the conversation."""
        with pytest.raises(AuthorizationError):
            await message_service.send_message(OUTSIDER_ID, conversation.id, "Hi")

        assert fake_db.rows("messages") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", "\n\t "])
    async def test_blank_content_rejected(
        self,
        message_service: MessageService,
        conversation: ConversationResponse,
        fake_db: FakeSupabaseClient,
        content: str,
    ) -> None:
        with pytest.raises(InvalidContentError):
            await message_service.send_message(STUDENT_ID, conversation.id, content)

        assert fake_db.rows("messages") == []

    @pytest.mark.asyncio
    async def test_too_long_content_rejected(
        self, message_service: MessageService, conversation: ConversationResponse
    ) -> None:
        with pytest.raises(InvalidContentError):
            await message_service.send_message(STUDENT_ID, conversation.id, "x" * 5001)

    @pytest.mark.asyncio
    async def test_file_message_requires_file(
        self, message_service: MessageService, conversation: ConversationResponse
    ) -> None:
        with pytest.raises(InvalidContentError):
            await message_service.send_message(
                STUDENT_ID, conversation.id, "cv.pdf", message_type=MessageType.FILE
            )

    @pytest.mark.asyncio
    async def test_file_message_keeps_metadata(
        self, message_service: MessageService, conversation: ConversationResponse
    ) -> None:
        file = FileMetadata(
            url="https://cdn.example/cv.pdf", name="cv.pdf", type="application/pdf", size=2048
        )

        message = await message_service.send_message(
            STUDENT_ID, conversation.id, "cv.pdf", message_type=MessageType.FILE, file=file
        )

        assert message.message_type == MessageType.FILE
        assert message.file_url == "https://cdn.example/cv.pdf"
        assert message.file_size == 2048

    @pytest.mark.asyncio
    async def test_preview_failure_does_not_fail_send(
        self,
        message_service: MessageService,
        conversation: ConversationResponse,
        fake_db: FakeSupabaseClient,
        conversation_store: ConversationStore,
    ) -> None:
        """The message stays stored when every preview attempt fails."""
        fake_db.fail("conversations", "update", httpx.ConnectError("down"), times=10)

        message = await message_service.send_message(STUDENT_ID, conversation.id, "Hello")

        assert [row["id"] for row in fake_db.rows("messages")] == [str(message.id)]
        stored = await conversation_store.get(conversation.id)
        assert stored.last_message_preview is None

    @pytest.mark.asyncio
    async def test_preview_update_is_retried(
        self,
        message_service: MessageService,
        conversation: ConversationResponse,
        fake_db: FakeSupabaseClient,
        conversation_store: ConversationStore,
    ) -> None:
        fake_db.fail("conversations", "update", httpx.ConnectError("blip"), times=1)

        await message_service.send_message(STUDENT_ID, conversation.id, "Hello")

        stored = await conversation_store.get(conversation.id)
        assert stored.last_message_preview == "Hello"

    @pytest.mark.asyncio
    async def test_message_write_failure_is_reported(
        self,
        message_service: MessageService,
        conversation: ConversationResponse,
        fake_db: FakeSupabaseClient,
    ) -> None:
        fake_db.fail("messages", "insert", httpx.ConnectError("down"))

        with pytest.raises(StorageUnavailableError):
            await message_service.send_message(STUDENT_ID, conversation.id, "Hello")


class TestPublishing:
    """Change events produced by sends."""

    @pytest.mark.asyncio
    async def test_insert_reaches_both_participants_in_order(
        self,
        message_service: MessageService,
        conversation: ConversationResponse,
        feed: ChangeFeed,
    ) -> None:
        student = feed.subscribe(STUDENT_ID)
        professor = feed.subscribe(PROFESSOR_ID)
        outsider = feed.subscribe(OUTSIDER_ID)

        sent = [
            await message_service.send_message(STUDENT_ID, conversation.id, f"message {i}")
            for i in range(3)
        ]

        for subscription in (student, professor):
            inserts = []
            while len(inserts) < 3:
                event = await asyncio.wait_for(subscription.next_event(), timeout=1)
                if event.table == FeedTable.MESSAGES and event.type == ChangeType.INSERT:
                    inserts.append(event)
            assert [e.record["id"] for e in inserts] == [str(m.id) for m in sent]
            sequences = [e.sequence for e in inserts]
            assert sequences == sorted(sequences)

        assert feed.get_stats()["users"] == 3
        outsider.close()
        assert await outsider.next_event() is None

    @pytest.mark.asyncio
    async def test_concurrent_sends_publish_in_creation_order(
        self,
        message_service: MessageService,
        conversation: ConversationResponse,
        feed: ChangeFeed,
    ) -> None:
        subscription = feed.subscribe(PROFESSOR_ID)

        sent = await asyncio.gather(
            *(message_service.send_message(STUDENT_ID, conversation.id, f"m{i}") for i in range(5))
        )

        inserts = []
        while len(inserts) < 5:
            event = await asyncio.wait_for(subscription.next_event(), timeout=1)
            if event.table == FeedTable.MESSAGES:
                inserts.append(event)

        by_creation = sorted(sent, key=lambda m: (m.created_at, str(m.id)))
        assert [e.record["id"] for e in inserts] == [str(m.id) for m in by_creation]
        subscription.close()
