"""In-process change feed pushing message and conversation row changes to subscribers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from threading import Lock
from typing import Any
from uuid import UUID, uuid4

from src.schemas.conversation import ConversationResponse
from src.schemas.feed import ChangeEvent, ChangeType, FeedTable
from src.schemas.message import MessageResponse

logger = logging.getLogger(__name__)

CLOSE_REASON_CLIENT = "closed"
CLOSE_REASON_OVERFLOW = "overflow"
CLOSE_REASON_SHUTDOWN = "shutdown"


class Subscription:
    """A single client's view of the change feed.

    Iterate with ``async for`` to receive events in publish order. The
    handle must be released exactly once; ``close()`` is idempotent and
    ``async with`` releases it on exit.
    """

    def __init__(self, feed: ChangeFeed, user_id: UUID, max_queue_size: int) -> None:
        self.id = uuid4()
        self.user_id = user_id
        self.close_reason: str | None = None
        self._feed = feed
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue(maxsize=max_queue_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the subscription has been released."""
        return self._closed

    def deliver(self, event: ChangeEvent) -> bool:
        """Queue an event without blocking the publisher.

        Returns:
            bool: False if the subscription is closed or its buffer is full.
        """
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self, reason: str = CLOSE_REASON_CLIENT) -> None:
        """Release the subscription and wake any pending reader."""
        if self._closed:
            return
        self._closed = True
        self.close_reason = reason
        self._feed._remove(self)

        # Buffered events are dropped; a closed subscriber re-fetches on reconnect.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def next_event(self) -> ChangeEvent | None:
        """Wait for the next event, or None once the subscription is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.next_event()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()


class ChangeFeed:
    """Fan-out of row-level change events, filtered by participant.

    Every event names the two participants of its conversation and is
    delivered only to their subscriptions. Events of one conversation are
    numbered consecutively in publish order; callers publish under the
    conversation's write lock so that order matches creation order.

    A conversation's counter is kept only while one of its participants is
    subscribed. A counter started again later begins above every sequence
    the feed has issued, so numbers never repeat for a conversation.
    """

    def __init__(self, max_queue_size: int = 256) -> None:
        self.max_queue_size = max_queue_size
        self._subscribers: dict[UUID, set[Subscription]] = defaultdict(set)
        self._sequences: dict[UUID, int] = {}
        self._sequence_participants: dict[UUID, tuple[UUID, UUID]] = {}
        self._lock = Lock()
        self._published = 0
        self._dropped = 0

    def subscribe(self, user_id: UUID) -> Subscription:
        """Register a subscription for every event visible to ``user_id``."""
        subscription = Subscription(self, user_id, self.max_queue_size)
        with self._lock:
            self._subscribers[user_id].add(subscription)
        logger.debug("Subscription %s opened for user %s", subscription.id, user_id)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscriptions = self._subscribers.get(subscription.user_id)
            if subscriptions is not None:
                subscriptions.discard(subscription)
                if not subscriptions:
                    del self._subscribers[subscription.user_id]
                    self._prune_sequences(subscription.user_id)
        logger.debug(
            "Subscription %s closed (%s)", subscription.id, subscription.close_reason
        )

    def _forget_sequence(self, conversation_id: UUID) -> None:
        self._sequences.pop(conversation_id, None)
        self._sequence_participants.pop(conversation_id, None)

    def _prune_sequences(self, user_id: UUID) -> None:
        """Drop counters of ``user_id``'s conversations nobody is watching. Caller holds the lock."""
        idle = [
            conversation_id
            for conversation_id, participants in self._sequence_participants.items()
            if user_id in participants
            and not any(p in self._subscribers for p in participants)
        ]
        for conversation_id in idle:
            self._forget_sequence(conversation_id)

    def publish(
        self,
        table: FeedTable,
        change_type: ChangeType,
        conversation_id: UUID,
        participants: tuple[UUID, UUID],
        record: dict[str, Any],
    ) -> ChangeEvent:
        """Number an event and deliver it to the participants' subscriptions.

        Args:
            table: Table the changed row belongs to.
            change_type: Insert or update.
            conversation_id: Conversation the row belongs to.
            participants: The two users allowed to see the event.
            record: JSON-serializable new row.

        Returns:
            ChangeEvent: The published event.
        """
        with self._lock:
            previous = self._sequences.get(conversation_id)
            sequence = self._published + 1 if previous is None else previous + 1
            event = ChangeEvent(
                table=table,
                type=change_type,
                conversation_id=conversation_id,
                sequence=sequence,
                record=record,
                participants=participants,
            )
            targets = [
                subscription
                for user_id in set(participants)
                for subscription in self._subscribers.get(user_id, ())
            ]
            self._published += 1
            if targets:
                self._sequences[conversation_id] = sequence
                self._sequence_participants[conversation_id] = participants
            else:
                self._forget_sequence(conversation_id)

        overflowed = [subscription for subscription in targets if not subscription.deliver(event)]
        for subscription in overflowed:
            if subscription.closed:
                continue
            logger.warning(
                "Subscription %s for user %s overflowed, dropping it",
                subscription.id,
                subscription.user_id,
            )
            with self._lock:
                self._dropped += 1
            subscription.close(CLOSE_REASON_OVERFLOW)

        return event

    def publish_message(self, change_type: ChangeType, message: MessageResponse) -> ChangeEvent:
        """Publish a message row change to its sender and receiver."""
        return self.publish(
            FeedTable.MESSAGES,
            change_type,
            message.conversation_id,
            (message.sender_id, message.receiver_id),
            message.model_dump(mode="json"),
        )

    def publish_conversation(
        self, change_type: ChangeType, conversation: ConversationResponse
    ) -> ChangeEvent:
        """Publish a conversation row change to both participants."""
        return self.publish(
            FeedTable.CONVERSATIONS,
            change_type,
            conversation.id,
            (conversation.participant1_id, conversation.participant2_id),
            conversation.model_dump(mode="json"),
        )

    def close_all(self, reason: str = CLOSE_REASON_SHUTDOWN) -> int:
        """Close every open subscription.

        Returns:
            int: Number of subscriptions closed.
        """
        with self._lock:
            subscriptions = [s for group in self._subscribers.values() for s in group]
        for subscription in subscriptions:
            subscription.close(reason)
        return len(subscriptions)

    def get_stats(self) -> dict[str, int]:
        """Get feed statistics for monitoring."""
        with self._lock:
            return {
                "subscribers": sum(len(group) for group in self._subscribers.values()),
                "users": len(self._subscribers),
                "conversations": len(self._sequences),
                "published": self._published,
                "dropped": self._dropped,
            }


# Global singleton instance
_change_feed: ChangeFeed | None = None


def get_change_feed() -> ChangeFeed:
    """Get or create the global change feed."""
    global _change_feed
    if _change_feed is None:
        from src.core.config import get_settings

        _change_feed = ChangeFeed(max_queue_size=get_settings().change_feed_queue_size)
    return _change_feed


async def init_change_feed() -> ChangeFeed:
    """Create the change feed. Call at app startup."""
    feed = get_change_feed()
    logger.info("Change feed ready (queue size %d)", feed.max_queue_size)
    return feed


async def shutdown_change_feed() -> None:
    """Close all subscriptions and drop the feed. Call at app shutdown."""
    global _change_feed
    if _change_feed:
        closed = _change_feed.close_all()
        logger.info("Change feed closed %d subscriptions", closed)
        _change_feed = None
