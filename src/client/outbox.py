"""Outgoing message lifecycle on the client."""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from src.client.timeline import new_local_id
from src.schemas.message import MessageResponse


class OutboundState(str, Enum):
    """Lifecycle of a message the user is sending."""

    COMPOSING = "composing"
    OPTIMISTIC_SENT = "optimistic_sent"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# Allowed moves between states
TRANSITIONS: dict[OutboundState, set[OutboundState]] = {
    OutboundState.COMPOSING: {OutboundState.OPTIMISTIC_SENT},
    OutboundState.OPTIMISTIC_SENT: {OutboundState.CONFIRMED, OutboundState.FAILED},
    OutboundState.FAILED: {OutboundState.COMPOSING},
    OutboundState.CONFIRMED: set(),
}


class InvalidTransitionError(Exception):
    """An outbound message was moved to a state it cannot reach."""

    def __init__(self, current: OutboundState, target: OutboundState) -> None:
        self.current = current
        self.target = target
        super().__init__(f"cannot move outbound message from {current.value} to {target.value}")


@dataclass
class OutboundMessage:
    """A message on its way from the composer to the server."""

    conversation_id: UUID
    content: str
    local_id: str = ""
    state: OutboundState = OutboundState.COMPOSING
    message: MessageResponse | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.local_id:
            self.local_id = new_local_id()

    def _move(self, target: OutboundState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)
        self.state = target

    def mark_sent(self) -> None:
        """The optimistic copy is shown and the request is in flight."""
        self._move(OutboundState.OPTIMISTIC_SENT)

    def confirm(self, message: MessageResponse) -> None:
        """The server stored the message."""
        self._move(OutboundState.CONFIRMED)
        self.message = message
        self.error = None

    def fail(self, error: str) -> None:
        """The send was rejected or never reached the server."""
        self._move(OutboundState.FAILED)
        self.error = error

    def retry(self) -> str:
        """Put a failed message back in the composer.

        Returns:
            str: The content to restore in the composer.
        """
        self._move(OutboundState.COMPOSING)
        self.error = None
        return self.content


class Outbox:
    """Messages the user has sent that are not yet confirmed."""

    def __init__(self) -> None:
        self._messages: dict[str, OutboundMessage] = {}

    def compose(self, conversation_id: UUID, content: str) -> OutboundMessage:
        outbound = OutboundMessage(conversation_id=conversation_id, content=content)
        self._messages[outbound.local_id] = outbound
        return outbound

    def get(self, local_id: str) -> OutboundMessage | None:
        return self._messages.get(local_id)

    def failed(self) -> list[OutboundMessage]:
        return [m for m in self._messages.values() if m.state == OutboundState.FAILED]

    def in_flight(self) -> list[OutboundMessage]:
        return [m for m in self._messages.values() if m.state == OutboundState.OPTIMISTIC_SENT]

    def settle(self, outbound: OutboundMessage) -> None:
        """Forget a confirmed message."""
        if outbound.state != OutboundState.CONFIRMED:
            raise InvalidTransitionError(outbound.state, OutboundState.CONFIRMED)
        self._messages.pop(outbound.local_id, None)

    def discard(self, outbound: OutboundMessage) -> None:
        """Stop tracking a message, e.g. once it is back in the composer."""
        self._messages.pop(outbound.local_id, None)
