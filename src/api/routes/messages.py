"""Direct messaging API routes."""

import asyncio
import logging
from uuid import UUID

from fastapi import APIRouter, Response, WebSocket, WebSocketDisconnect, status

from src.api.deps import CurrentUser, Messaging
from src.api.middleware.auth import AuthError, authenticate_token
from src.core.change_feed import CLOSE_REASON_CLIENT, Subscription, get_change_feed
from src.schemas.conversation import (
    ConversationCreate,
    ConversationListResponse,
    GetOrCreateConversationResponse,
    UnreadCountResponse,
)
from src.schemas.feed import FeedControl
from src.schemas.message import MarkReadResponse, MessageCreate, MessageListResponse, MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])

WS_CLOSE_UNAUTHENTICATED = 4401


@router.get(
    "/conversations",
    response_model=ConversationListResponse,
    summary="List conversations",
    description="Returns the caller's conversations, most recent message first, with unread counts.",
)
async def list_conversations(user: CurrentUser, service: Messaging) -> ConversationListResponse:
    """List the caller's conversations."""
    conversations = await service.list_conversations(user.user_id)
    return ConversationListResponse(conversations=conversations)


@router.post(
    "/conversations",
    response_model=GetOrCreateConversationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        200: {"description": "Conversation already existed"},
        201: {"description": "Conversation created"},
        400: {"description": "Cannot create conversation with yourself"},
    },
    summary="Get or create a conversation",
    description="Returns the single conversation between the caller and another user, creating it on first contact.",
)
async def get_or_create_conversation(
    data: ConversationCreate,
    user: CurrentUser,
    service: Messaging,
    response: Response,
) -> GetOrCreateConversationResponse:
    """Get or create the conversation with another user.

    Args:
        data: The other user and the optional originating context.
        user: The authenticated caller.
        service: Messaging service.
        response: Used to report 200 when the conversation already existed.

    Returns:
        GetOrCreateConversationResponse: The conversation id and whether it was created.
    """
    conversation, created = await service.get_or_create_conversation(
        user.user_id,
        data.other_user_id,
        application_id=data.application_id,
        grant_id=data.grant_id,
    )
    if not created:
        response.status_code = status.HTTP_200_OK

    return GetOrCreateConversationResponse(conversation_id=conversation.id, created=created)


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=MessageListResponse,
    responses={
        403: {"description": "Caller is not a participant"},
        404: {"description": "Conversation not found"},
    },
    summary="Fetch messages",
    description="Returns all messages oldest first and marks the caller's received messages read.",
)
async def fetch_messages(
    conversation_id: UUID,
    user: CurrentUser,
    service: Messaging,
) -> MessageListResponse:
    """Fetch a conversation's messages."""
    messages = await service.fetch_messages(conversation_id, user.user_id)
    return MessageListResponse(messages=messages)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        403: {"description": "Caller is not a participant"},
        404: {"description": "Conversation not found"},
        422: {"description": "Message content is empty or invalid"},
    },
    summary="Send a message",
)
async def send_message(
    conversation_id: UUID,
    data: MessageCreate,
    user: CurrentUser,
    service: Messaging,
) -> MessageResponse:
    """Send a message into a conversation.

    Args:
        conversation_id: Target conversation.
        data: Message content, type and optional attachment.
        user: The authenticated sender.
        service: Messaging service.

    Returns:
        MessageResponse: The stored message.
    """
    return await service.send_message(
        conversation_id,
        user.user_id,
        data.content,
        message_type=data.message_type,
        file=data.file,
    )


@router.post(
    "/conversations/{conversation_id}/read",
    response_model=MarkReadResponse,
    summary="Mark conversation read",
)
async def mark_conversation_read(
    conversation_id: UUID,
    user: CurrentUser,
    service: Messaging,
) -> MarkReadResponse:
    """Mark the caller's received messages in a conversation as read."""
    updated = await service.mark_conversation_read(conversation_id, user.user_id)
    return MarkReadResponse(updated=updated)


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Unread message total",
)
async def unread_count(user: CurrentUser, service: Messaging) -> UnreadCountResponse:
    """Total unread messages addressed to the caller."""
    return UnreadCountResponse(unread_count=await service.unread_count(user.user_id))


async def _watch_client(websocket: WebSocket, subscription: Subscription) -> None:
    """Release the subscription once the client goes away.

    Frames sent by the client are ignored.
    """
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except (WebSocketDisconnect, RuntimeError):
        pass
    finally:
        subscription.close(CLOSE_REASON_CLIENT)


@router.websocket("/ws")
async def change_feed_socket(websocket: WebSocket) -> None:
    """Stream message and conversation changes visible to the caller.

    The access token is passed as the ``token`` query parameter. Each
    change is sent as one JSON text frame. When the server drops the
    subscription it sends a ``resync`` control frame first, telling the
    client to re-fetch before reconnecting.
    """
    try:
        user = authenticate_token(websocket.query_params.get("token"))
    except AuthError as e:
        logger.info("WebSocket rejected: %s", e.message)
        await websocket.close(code=WS_CLOSE_UNAUTHENTICATED)
        return

    feed = get_change_feed()

    # Subscribe before accepting so nothing published after the handshake is missed
    async with feed.subscribe(user.user_id) as subscription:
        await websocket.accept()
        watcher = asyncio.create_task(_watch_client(websocket, subscription))
        try:
            async for event in subscription:
                await websocket.send_json(event.to_wire())

            if subscription.close_reason != CLOSE_REASON_CLIENT:
                await websocket.send_json(
                    FeedControl(reason=subscription.close_reason or "closed").model_dump()
                )
                await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        except WebSocketDisconnect:
            logger.debug("WebSocket for %s disconnected", user.user_id)
        finally:
            watcher.cancel()
            try:
                await watcher
            except asyncio.CancelledError:
                pass
