"""Supabase client singleton for database operations."""

import logging
from functools import lru_cache
from typing import Any, TypeVar

import httpx
from postgrest.exceptions import APIError as PostgrestAPIError
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from supabase import Client, create_client

from src.api.middleware.error_handler import StorageUnavailableError
from src.core.config import get_settings

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@lru_cache
def get_supabase_client() -> Client:
    """Get cached Supabase client singleton for database operations.

    Uses secret key (sb_secret_) for backend operations, which bypasses RLS
    at the PostgREST level. Participant checks are therefore performed by
    the services before any read or write is issued.

    Returns:
        Client: Supabase client instance.
    """
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_secret_key,
    )


def execute(query: Any, operation: str) -> Any:
    """Execute a PostgREST query, translating transport failures.

    Args:
        query: A query builder ready for ``execute()``.
        operation: Short description used in logs and error messages.

    Returns:
        The PostgREST response object.

    Raises:
        StorageUnavailableError: If the database rejected or never received the query.
    """
    try:
        return query.execute()
    except (PostgrestAPIError, httpx.HTTPError) as e:
        logger.error("Storage failure during %s: %s", operation, e)
        raise StorageUnavailableError(f"Storage unavailable while trying to {operation}") from e


def parse_row(model: type[ModelT], row: Any, kind: str) -> ModelT:
    """Validate a database row into its typed model.

    Args:
        model: Pydantic model describing the row.
        row: Raw row returned by PostgREST.
        kind: Row kind used in logs and error messages.

    Returns:
        The validated model instance.

    Raises:
        StorageUnavailableError: If the row does not have the expected shape.
    """
    try:
        return model.model_validate(row)
    except PydanticValidationError as e:
        logger.error("Malformed %s row from storage: %s", kind, e)
        raise StorageUnavailableError(f"Storage returned a malformed {kind} row") from e


async def check_database_connection() -> dict[str, Any]:
    """Check if database connection is healthy.

    Performs a simple query to verify database connectivity.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        client = get_supabase_client()
        client.table("conversations").select("id").limit(1).execute()
        return {"healthy": True}
    except Exception as e:
        return {"healthy": False, "error": str(e)}
