"""HTTP client for the messaging API."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar
from uuid import UUID

import httpx
from pydantic import ValidationError as PydanticValidationError

from src.models.message import MessageType
from src.schemas.common import ErrorResponse
from src.schemas.conversation import ConversationListEntry, GetOrCreateConversationResponse
from src.schemas.message import FileMetadata, MessageResponse, MessageWithSender

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/messages"
DEFAULT_TIMEOUT_SECONDS = 10.0

T = TypeVar("T")


class MessagingAPIError(RuntimeError):
    """A messaging request failed.

    ``status_code`` is 0 when the server was never reached.
    """

    def __init__(self, message: str, status_code: int = 0, error_type: str = "transport_error") -> None:
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        super().__init__(message)


class MessagingAPIClient:
    """Calls the messaging endpoints on behalf of one signed-in user.

    Use as an async context manager, or call ``aclose()`` when done. An
    ``httpx.AsyncClient`` passed in is not closed by this class.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def __aenter__(self) -> MessagingAPIClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        parse: Callable[[Any], T],
        json: dict[str, Any] | None = None,
    ) -> T:
        """Send a request and build the result from its JSON body with ``parse``.

        Raises:
            MessagingAPIError: On transport failure, an error status, or a
                success body that is not JSON or does not match ``parse``
                (``error_type`` "invalid_response").
        """
        try:
            response = await self._client.request(
                method, f"{API_PREFIX}{path}", json=json, headers=self._headers
            )
        except httpx.HTTPError as e:
            logger.warning("Messaging request %s %s failed: %s", method, path, e)
            raise MessagingAPIError(f"Request failed: {e}") from e

        if response.is_error:
            raise self._error_from(response)

        try:
            return parse(response.json())
        except (ValueError, KeyError, TypeError, PydanticValidationError) as e:
            logger.warning("Unexpected response to %s %s: %s", method, path, e)
            raise MessagingAPIError(
                "Unexpected response from server", response.status_code, "invalid_response"
            ) from e

    @staticmethod
    def _error_from(response: httpx.Response) -> MessagingAPIError:
        try:
            body = ErrorResponse.model_validate(response.json())
            return MessagingAPIError(body.message, response.status_code, body.error)
        except (ValueError, PydanticValidationError):
            return MessagingAPIError(
                response.text or response.reason_phrase, response.status_code, "http_error"
            )

    async def list_conversations(self) -> list[ConversationListEntry]:
        return await self._request(
            "GET",
            "/conversations",
            lambda data: [ConversationListEntry.model_validate(c) for c in data["conversations"]],
        )

    async def get_or_create_conversation(
        self,
        other_user_id: UUID,
        application_id: UUID | None = None,
        grant_id: UUID | None = None,
    ) -> GetOrCreateConversationResponse:
        payload = {
            "other_user_id": str(other_user_id),
            "application_id": str(application_id) if application_id else None,
            "grant_id": str(grant_id) if grant_id else None,
        }
        return await self._request(
            "POST", "/conversations", GetOrCreateConversationResponse.model_validate, json=payload
        )

    async def fetch_messages(self, conversation_id: UUID) -> list[MessageWithSender]:
        return await self._request(
            "GET",
            f"/conversations/{conversation_id}/messages",
            lambda data: [MessageWithSender.model_validate(m) for m in data["messages"]],
        )

    async def send_message(
        self,
        conversation_id: UUID,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        file: FileMetadata | None = None,
    ) -> MessageResponse:
        payload: dict[str, Any] = {"content": content, "message_type": message_type.value}
        if file is not None:
            payload["file"] = file.model_dump()
        return await self._request(
            "POST",
            f"/conversations/{conversation_id}/messages",
            MessageResponse.model_validate,
            json=payload,
        )

    async def mark_conversation_read(self, conversation_id: UUID) -> int:
        return await self._request(
            "POST", f"/conversations/{conversation_id}/read", lambda data: int(data["updated"])
        )

    async def unread_count(self) -> int:
        return await self._request("GET", "/unread-count", lambda data: int(data["unread_count"]))
