"""Unit tests for the client conversation list."""

from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from src.client.conversation_list import ConversationListState
from src.schemas.conversation import ConversationListEntry, ConversationResponse
from src.schemas.message import MessageResponse
from tests.fakes import OUTSIDER_ID, PROFESSOR_ID, STUDENT_ID

EARLY = datetime(2024, 6, 1, 9, tzinfo=timezone.utc)


def _entry(other_user_id: UUID, last_message_at: datetime | None = None, **fields) -> ConversationListEntry:
    return ConversationListEntry(
        id=fields.pop("id", uuid4()),
        other_user_id=other_user_id,
        last_message_at=last_message_at,
        **fields,
    )


def _message(conversation_id: UUID, sender_id: UUID, receiver_id: UUID, content: str = "hi", **fields) -> MessageResponse:
    return MessageResponse(
        id=fields.pop("id", uuid4()),
        conversation_id=conversation_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        created_at=fields.pop("created_at", EARLY + timedelta(hours=1)),
        **fields,
    )


@pytest.fixture
def state() -> ConversationListState:
    """The professor's list with one conversation per other user."""
    state = ConversationListState(PROFESSOR_ID)
    state.load(
        [
            _entry(STUDENT_ID, EARLY, name="Ada Student", email="ada@uni.example", last_message_preview="Thanks"),
            _entry(OUTSIDER_ID, None, name="Linus Outsider", email="linus@uni.example"),
        ]
    )
    return state


def _id_for(state: ConversationListState, other_user_id: UUID) -> UUID:
    return next(e.id for e in state.entries if e.other_user_id == other_user_id)


class TestOrdering:
    """Tests for entries ordering."""

    def test_without_messages_last(self, state: ConversationListState) -> None:
        assert [e.other_user_id for e in state.entries] == [STUDENT_ID, OUTSIDER_ID]

    def test_new_message_moves_entry_to_top(self, state: ConversationListState) -> None:
        quiet = _id_for(state, OUTSIDER_ID)

        state.on_message_inserted(_message(quiet, OUTSIDER_ID, PROFESSOR_ID, "  ping  "))

        top = state.entries[0]
        assert top.id == quiet
        assert top.last_message_preview == "ping"


class TestUnreadBadges:
    """Unread counts kept current from change events."""

    def test_received_message_counts(self, state: ConversationListState) -> None:
        conversation_id = _id_for(state, STUDENT_ID)

        assert state.on_message_inserted(_message(conversation_id, STUDENT_ID, PROFESSOR_ID)) is True

        assert state.get(conversation_id).unread_count == 1
        assert state.total_unread == 1

    def test_own_message_does_not_count(self, state: ConversationListState) -> None:
        conversation_id = _id_for(state, STUDENT_ID)

        state.on_message_inserted(_message(conversation_id, PROFESSOR_ID, STUDENT_ID))

        assert state.get(conversation_id).unread_count == 0

    def test_open_conversation_does_not_count(self, state: ConversationListState) -> None:
        conversation_id = _id_for(state, STUDENT_ID)

        state.on_message_inserted(
            _message(conversation_id, STUDENT_ID, PROFESSOR_ID), active_conversation_id=conversation_id
        )

        assert state.get(conversation_id).unread_count == 0

    def test_duplicate_insert_counted_once(self, state: ConversationListState) -> None:
        conversation_id = _id_for(state, STUDENT_ID)
        message = _message(conversation_id, STUDENT_ID, PROFESSOR_ID)

        state.on_message_inserted(message)
        state.on_message_inserted(message)

        assert state.get(conversation_id).unread_count == 1

    def test_insert_redelivered_after_load(self) -> None:
        """A message the list fetch already counted is not counted again."""
        state = ConversationListState(PROFESSOR_ID)
        message = _message(uuid4(), STUDENT_ID, PROFESSOR_ID, "Is the position open?")
        state.load(
            [
                _entry(
                    STUDENT_ID,
                    message.created_at,
                    id=message.conversation_id,
                    last_message_preview="Is the position open?",
                    unread_count=1,
                )
            ]
        )

        assert state.on_message_inserted(message) is True

        assert state.get(message.conversation_id).unread_count == 1

    def test_older_insert_does_not_roll_back_preview(self, state: ConversationListState) -> None:
        conversation_id = _id_for(state, STUDENT_ID)
        state.on_message_inserted(_message(conversation_id, STUDENT_ID, PROFESSOR_ID, "newest"))

        state.on_message_inserted(
            _message(conversation_id, STUDENT_ID, PROFESSOR_ID, "older", created_at=EARLY + timedelta(minutes=30))
        )

        entry = state.get(conversation_id)
        assert entry.last_message_preview == "newest"
        assert entry.last_message_at == EARLY + timedelta(hours=1)
        assert entry.unread_count == 1

    def test_same_instant_different_message_counts(self, state: ConversationListState) -> None:
        conversation_id = _id_for(state, STUDENT_ID)
        state.on_message_inserted(_message(conversation_id, STUDENT_ID, PROFESSOR_ID, "first"))

        state.on_message_inserted(_message(conversation_id, STUDENT_ID, PROFESSOR_ID, "second"))

        assert state.get(conversation_id).unread_count == 2

    def test_unknown_conversation_needs_refetch(self, state: ConversationListState) -> None:
        assert state.on_message_inserted(_message(uuid4(), STUDENT_ID, PROFESSOR_ID)) is False

    def test_read_flip_lowers_count_once(self, state: ConversationListState) -> None:
        conversation_id = _id_for(state, STUDENT_ID)
        first = _message(conversation_id, STUDENT_ID, PROFESSOR_ID)
        second = _message(conversation_id, STUDENT_ID, PROFESSOR_ID, created_at=EARLY + timedelta(hours=1, minutes=1))
        state.on_message_inserted(first)
        state.on_message_inserted(second)

        read = first.model_copy(update={"is_read": True, "read_at": EARLY + timedelta(hours=2)})
        state.on_message_updated(read)
        state.on_message_updated(read)

        assert state.get(conversation_id).unread_count == 1

    def test_read_flip_never_goes_negative(self, state: ConversationListState) -> None:
        conversation_id = _id_for(state, STUDENT_ID)
        read = _message(
            conversation_id, STUDENT_ID, PROFESSOR_ID, is_read=True, read_at=EARLY + timedelta(hours=2)
        )

        state.on_message_updated(read)

        assert state.get(conversation_id).unread_count == 0

    def test_mark_open_clears_badge(self, state: ConversationListState) -> None:
        conversation_id = _id_for(state, STUDENT_ID)
        state.on_message_inserted(_message(conversation_id, STUDENT_ID, PROFESSOR_ID))

        state.mark_open(conversation_id)

        assert state.total_unread == 0


class TestConversationChanges:
    """Tests for on_conversation_changed."""

    def test_new_conversation_added(self, state: ConversationListState) -> None:
        stranger = UUID("880e8400-e29b-41d4-a716-446655440000")
        conversation = ConversationResponse(
            id=uuid4(), participant1_id=stranger, participant2_id=PROFESSOR_ID, created_at=EARLY
        )

        assert state.on_conversation_changed(conversation) is True
        entry = state.get(conversation.id)
        assert entry.other_user_id == stranger
        assert entry.name == "Unknown"

    def test_foreign_conversation_ignored(self, state: ConversationListState) -> None:
        conversation = ConversationResponse(
            id=uuid4(), participant1_id=STUDENT_ID, participant2_id=OUTSIDER_ID, created_at=EARLY
        )

        assert state.on_conversation_changed(conversation) is False
        assert state.get(conversation.id) is None

    def test_stale_update_does_not_roll_back_preview(self, state: ConversationListState) -> None:
        conversation_id = _id_for(state, STUDENT_ID)
        state.on_message_inserted(_message(conversation_id, STUDENT_ID, PROFESSOR_ID, "newest"))

        stale = ConversationResponse(
            id=conversation_id,
            participant1_id=STUDENT_ID,
            participant2_id=PROFESSOR_ID,
            last_message_preview="older",
            last_message_at=EARLY + timedelta(minutes=30),
            created_at=EARLY,
        )
        state.on_conversation_changed(stale)

        assert state.get(conversation_id).last_message_preview == "newest"


class TestSearch:
    """Tests for search."""

    @pytest.mark.parametrize(
        ("query", "expected"),
        [("ada", [STUDENT_ID]), ("LINUS@", [OUTSIDER_ID]), ("thanks", [STUDENT_ID]), ("nobody", [])],
    )
    def test_matches_name_email_or_preview(
        self, state: ConversationListState, query: str, expected: list[UUID]
    ) -> None:
        assert [e.other_user_id for e in state.search(query)] == expected

    def test_blank_query_returns_everything(self, state: ConversationListState) -> None:
        assert len(state.search("  ")) == 2
