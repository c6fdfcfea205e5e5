"""Unit tests for the outgoing message lifecycle."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from src.client.outbox import InvalidTransitionError, OutboundState, Outbox
from src.schemas.message import MessageResponse
from tests.fakes import PROFESSOR_ID, STUDENT_ID


def _stored(conversation_id, content: str) -> MessageResponse:
    return MessageResponse(
        id=uuid4(),
        conversation_id=conversation_id,
        sender_id=STUDENT_ID,
        receiver_id=PROFESSOR_ID,
        content=content,
        created_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


class TestLifecycle:
    """State transitions of an outbound message."""

    def test_happy_path(self, outbox: Outbox) -> None:
        outbound = outbox.compose(uuid4(), "Hello")
        assert outbound.state == OutboundState.COMPOSING
        assert outbound.local_id.startswith("temp-")

        outbound.mark_sent()
        assert outbox.in_flight() == [outbound]

        stored = _stored(outbound.conversation_id, "Hello")
        outbound.confirm(stored)
        assert outbound.state == OutboundState.CONFIRMED
        assert outbound.message == stored

        outbox.settle(outbound)
        assert outbox.get(outbound.local_id) is None

    def test_failure_and_retry(self, outbox: Outbox) -> None:
        outbound = outbox.compose(uuid4(), "Hello")
        outbound.mark_sent()

        outbound.fail("Storage unavailable")
        assert outbox.failed() == [outbound]
        assert outbound.error == "Storage unavailable"

        assert outbound.retry() == "Hello"
        assert outbound.state == OutboundState.COMPOSING
        assert outbound.error is None

    @pytest.mark.parametrize(
        ("steps", "bad_step"),
        [
            ([], "confirm"),
            ([], "fail"),
            (["mark_sent"], "mark_sent"),
            (["mark_sent"], "retry"),
            (["mark_sent", "confirm"], "fail"),
            (["mark_sent", "fail"], "confirm"),
        ],
    )
    def test_invalid_transitions(self, outbox: Outbox, steps: list[str], bad_step: str) -> None:
        outbound = outbox.compose(uuid4(), "Hello")
        stored = _stored(outbound.conversation_id, "Hello")
        actions = {
            "mark_sent": outbound.mark_sent,
            "confirm": lambda: outbound.confirm(stored),
            "fail": lambda: outbound.fail("boom"),
            "retry": outbound.retry,
        }
        for step in steps:
            actions[step]()

        state_before = outbound.state
        with pytest.raises(InvalidTransitionError):
            actions[bad_step]()
        assert outbound.state == state_before

    def test_settle_requires_confirmation(self, outbox: Outbox) -> None:
        outbound = outbox.compose(uuid4(), "Hello")

        with pytest.raises(InvalidTransitionError):
            outbox.settle(outbound)
        assert outbox.get(outbound.local_id) is outbound

    def test_discard(self, outbox: Outbox) -> None:
        outbound = outbox.compose(uuid4(), "Hello")

        outbox.discard(outbound)
        outbox.discard(outbound)

        assert outbox.get(outbound.local_id) is None
