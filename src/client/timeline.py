"""Message timeline of an open conversation, merging optimistic and confirmed messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from uuid import UUID, uuid4

from src.models.message import MessageType
from src.schemas.message import MessageResponse

DEFAULT_MATCH_WINDOW = timedelta(seconds=5)
PENDING_ID_PREFIX = "temp-"


def new_local_id() -> str:
    """Identifier for a message that has not reached the server yet."""
    return f"{PENDING_ID_PREFIX}{uuid4()}"


@dataclass(frozen=True)
class Confirmed:
    """A message known to the server."""

    message: MessageResponse

    @property
    def key(self) -> str:
        return str(self.message.id)

    @property
    def created_at(self) -> datetime:
        return self.message.created_at

    @property
    def sender_id(self) -> UUID:
        return self.message.sender_id

    @property
    def content(self) -> str:
        return self.message.content


@dataclass(frozen=True)
class Pending:
    """A message shown before the server confirmed it."""

    local_id: str
    conversation_id: UUID
    sender_id: UUID
    receiver_id: UUID
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    message_type: MessageType = MessageType.TEXT

    @property
    def key(self) -> str:
        return self.local_id


TimelineEntry = Confirmed | Pending


class MessageTimeline:
    """Ordered messages of one conversation as the client displays them.

    Confirmed messages are unique by id. A confirmed message that arrives
    while an optimistic copy is shown replaces that copy, whether it comes
    from the send response or from the change feed, and in either order.
    """

    def __init__(self, conversation_id: UUID, match_window: timedelta = DEFAULT_MATCH_WINDOW) -> None:
        self.conversation_id = conversation_id
        self.match_window = match_window
        self._confirmed: dict[UUID, Confirmed] = {}
        self._pending: dict[str, Pending] = {}

    def __len__(self) -> int:
        return len(self._confirmed) + len(self._pending)

    @property
    def entries(self) -> list[TimelineEntry]:
        """Entries oldest first; confirmed before pending on equal times."""
        confirmed = sorted(self._confirmed.values(), key=lambda e: (e.created_at, str(e.message.id)))
        pending = sorted(self._pending.values(), key=lambda e: e.created_at)
        merged: list[TimelineEntry] = [*confirmed, *pending]
        merged.sort(key=lambda e: (e.created_at, isinstance(e, Pending)))
        return merged

    @property
    def pending(self) -> list[Pending]:
        return [e for e in self.entries if isinstance(e, Pending)]

    def load(self, messages: list[MessageResponse]) -> None:
        """Replace confirmed messages with a fresh fetch.

        Pending entries survive unless the fetch already contains them.
        """
        self._confirmed = {}
        for message in messages:
            self._store_confirmed(message)

    def add_pending(
        self,
        sender_id: UUID,
        receiver_id: UUID,
        content: str,
        local_id: str | None = None,
        created_at: datetime | None = None,
        message_type: MessageType = MessageType.TEXT,
    ) -> Pending:
        """Show a message before the server has confirmed it."""
        entry = Pending(
            local_id=local_id or new_local_id(),
            conversation_id=self.conversation_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            created_at=created_at or datetime.now(timezone.utc),
            message_type=message_type,
        )
        self._pending[entry.local_id] = entry
        return entry

    def apply_confirmed(self, message: MessageResponse) -> Confirmed:
        """Insert or replace a confirmed message.

        An existing entry with the same id is replaced in place. Otherwise
        one pending entry from the same sender with the same text, created
        within ``match_window`` of the message, is dropped in its favour.
        """
        return self._store_confirmed(message)

    def apply_update(self, message: MessageResponse) -> bool:
        """Replace a confirmed message with its updated row.

        Returns:
            bool: False if the message is not on the timeline.
        """
        if message.id not in self._confirmed:
            return False
        self._confirmed[message.id] = Confirmed(message)
        return True

    def remove_pending(self, local_id: str) -> Pending | None:
        """Drop an optimistic entry, e.g. after its send failed."""
        return self._pending.pop(local_id, None)

    def date_separators(self) -> list[tuple[int, date]]:
        """Positions in ``entries`` where a new calendar day starts.

        The first entry always opens a day.
        """
        separators = []
        previous: date | None = None
        for index, entry in enumerate(self.entries):
            day = entry.created_at.date()
            if day != previous:
                separators.append((index, day))
                previous = day
        return separators

    def _store_confirmed(self, message: MessageResponse) -> Confirmed:
        if message.conversation_id != self.conversation_id:
            raise ValueError(f"message {message.id} belongs to conversation {message.conversation_id}")

        entry = Confirmed(message)
        if message.id not in self._confirmed:
            match = self._match_pending(message)
            if match is not None:
                del self._pending[match.local_id]
        self._confirmed[message.id] = entry
        return entry

    def _match_pending(self, message: MessageResponse) -> Pending | None:
        candidates = [
            p
            for p in self._pending.values()
            if p.sender_id == message.sender_id
            and p.content == message.content
            and abs(p.created_at - message.created_at) <= self.match_window
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda p: abs(p.created_at - message.created_at))
