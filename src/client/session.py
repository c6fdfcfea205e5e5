"""An open conversation on the client: timeline, outbox and live updates together."""

import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from src.client.api_client import MessagingAPIClient, MessagingAPIError
from src.client.conversation_list import ConversationListState
from src.client.outbox import Outbox, OutboundMessage, OutboundState
from src.client.timeline import DEFAULT_MATCH_WINDOW, MessageTimeline
from src.schemas.conversation import ConversationResponse
from src.schemas.feed import ChangeType, FeedTable
from src.schemas.message import MessageResponse

logger = logging.getLogger(__name__)


class ConversationSession:
    """Drives the screen of one open conversation.

    Sends are shown immediately as pending entries and reconciled with
    the server's copy, which may arrive first over the change feed or in
    the send response. Change events are applied through ``handle_event``;
    a gap in the conversation's event sequence, or a ``resync`` notice,
    triggers a full re-fetch.
    """

    def __init__(
        self,
        api: MessagingAPIClient,
        user_id: UUID,
        conversation_id: UUID,
        other_user_id: UUID,
        conversation_list: ConversationListState | None = None,
        match_window: timedelta = DEFAULT_MATCH_WINDOW,
    ) -> None:
        self.api = api
        self.user_id = user_id
        self.conversation_id = conversation_id
        self.other_user_id = other_user_id
        self.conversation_list = conversation_list
        self.timeline = MessageTimeline(conversation_id, match_window=match_window)
        self.outbox = Outbox()
        self.draft = ""
        self._last_sequence: int | None = None

    async def open(self) -> None:
        """Load the conversation; the server marks received messages read."""
        messages = await self.api.fetch_messages(self.conversation_id)
        self.timeline.load(messages)
        self._last_sequence = None
        if self.conversation_list is not None:
            self.conversation_list.mark_open(self.conversation_id)

    async def send(self, text: str) -> OutboundMessage | None:
        """Send ``text``, showing it before the server answers.

        On failure the pending entry disappears, the message is marked
        failed and its text is put back in ``draft``.

        Returns:
            OutboundMessage | None: The outbound message, or None for blank text.
        """
        content = text.strip()
        if not content:
            return None

        outbound = self.outbox.compose(self.conversation_id, content)
        self.timeline.add_pending(
            self.user_id, self.other_user_id, content, local_id=outbound.local_id
        )
        outbound.mark_sent()
        self.draft = ""

        try:
            message = await self.api.send_message(self.conversation_id, content)
        except MessagingAPIError as e:
            logger.warning("Send to %s failed: %s", self.conversation_id, e.message)
            self.timeline.remove_pending(outbound.local_id)
            outbound.fail(e.message)
            self.draft = content
            return outbound

        self.timeline.apply_confirmed(message)
        self.timeline.remove_pending(outbound.local_id)
        outbound.confirm(message)
        self.outbox.settle(outbound)
        return outbound

    async def retry(self, local_id: str) -> OutboundMessage | None:
        """Resend a failed message under a fresh local id."""
        outbound = self.outbox.get(local_id)
        if outbound is None or outbound.state != OutboundState.FAILED:
            return None
        content = outbound.retry()
        self.outbox.discard(outbound)
        return await self.send(content)

    async def handle_event(self, event: dict[str, Any]) -> None:
        """Apply one frame received from the change feed socket."""
        if event.get("type") == "resync":
            await self.open()
            return

        self._apply_to_list(event)

        if event.get("conversation_id") != str(self.conversation_id):
            return

        sequence = event.get("sequence")
        if isinstance(sequence, int):
            previous = self._last_sequence
            if previous is not None and sequence <= previous:
                return
            self._last_sequence = sequence
            if previous is not None and sequence > previous + 1:
                logger.info("Missed events in %s, re-fetching", self.conversation_id)
                await self.open()
                self._last_sequence = sequence
                return

        if event.get("table") != FeedTable.MESSAGES.value:
            return

        message = self._parse_message(event)
        if message is None:
            return

        if event.get("type") == ChangeType.INSERT.value:
            self.timeline.apply_confirmed(message)
            if message.receiver_id == self.user_id and not message.is_read:
                await self._mark_read()
        else:
            self.timeline.apply_update(message)

    def _apply_to_list(self, event: dict[str, Any]) -> None:
        if self.conversation_list is None:
            return

        if event.get("table") == FeedTable.CONVERSATIONS.value:
            try:
                conversation = ConversationResponse.model_validate(event.get("record"))
            except PydanticValidationError:
                logger.warning("Dropping malformed conversation event")
                return
            self.conversation_list.on_conversation_changed(conversation)
            return

        message = self._parse_message(event)
        if message is None:
            return
        if event.get("type") == ChangeType.INSERT.value:
            self.conversation_list.on_message_inserted(message, active_conversation_id=self.conversation_id)
        else:
            self.conversation_list.on_message_updated(message)

    def _parse_message(self, event: dict[str, Any]) -> MessageResponse | None:
        try:
            return MessageResponse.model_validate(event.get("record"))
        except PydanticValidationError:
            logger.warning("Dropping malformed message event")
            return None

    async def _mark_read(self) -> None:
        try:
            await self.api.mark_conversation_read(self.conversation_id)
        except MessagingAPIError as e:
            logger.warning("Could not mark %s read: %s", self.conversation_id, e.message)
