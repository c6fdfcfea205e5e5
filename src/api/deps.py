"""FastAPI dependency injection functions."""

import logging
from typing import Annotated

from fastapi import Depends, Header

from src.api.middleware.auth import AuthError, AuthErrorCode, authenticate_token, extract_bearer_token
from src.api.middleware.error_handler import AuthenticationError
from src.schemas.auth import UserContext
from src.services.messaging_service import MessagingService

logger = logging.getLogger(__name__)


async def get_current_user(
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> UserContext:
    """Extract and validate the current user from the Authorization header.

    Args:
        authorization: The Authorization header value (Bearer token).

    Returns:
        UserContext: The authenticated user's context.

    Raises:
        AuthenticationError: 401 if the token is missing, invalid, or expired.
    """
    try:
        return authenticate_token(extract_bearer_token(authorization))
    except AuthError as e:
        logger.debug("Rejected request token: %s", e.message)
        message = "Token has expired" if e.code == AuthErrorCode.TOKEN_EXPIRED else "Unauthenticated"
        raise AuthenticationError(message) from e


def get_messaging_service() -> MessagingService:
    """Build the messaging service for a request."""
    return MessagingService()


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[UserContext, Depends(get_current_user)]
Messaging = Annotated[MessagingService, Depends(get_messaging_service)]
