"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SUPABASE_SIGNING_KEY_JWK", "test-signing-key-jwk")

from src.core.change_feed import ChangeFeed  # noqa: E402
from src.services.conversation_store import ConversationStore  # noqa: E402
from src.services.message_store import MessageStore  # noqa: E402
from src.services.messaging_service import MessagingService  # noqa: E402
from src.services.profile_service import ProfileService  # noqa: E402
from tests.fakes import PROFESSOR_ID, STUDENT_ID, FakeSupabaseClient, user_for_token  # noqa: E402


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture
def fake_db() -> FakeSupabaseClient:
    """Provide an empty in-memory database with a profile per test user."""
    db = FakeSupabaseClient()
    db.add_row(
        "profiles",
        {
            "user_id": str(STUDENT_ID),
            "first_name": "Ada",
            "last_name": "Student",
            "email": "ada@uni.example",
            "avatar_url": None,
        },
    )
    db.add_row(
        "profiles",
        {
            "user_id": str(PROFESSOR_ID),
            "first_name": "Grace",
            "last_name": "Professor",
            "email": "grace@uni.example",
            "avatar_url": "https://cdn.example/grace.png",
        },
    )
    return db


@pytest.fixture
def feed() -> ChangeFeed:
    """Provide a change feed private to the test."""
    return ChangeFeed(max_queue_size=16)


@pytest.fixture
def conversation_store(fake_db: FakeSupabaseClient) -> ConversationStore:
    return ConversationStore(fake_db)


@pytest.fixture
def message_store(fake_db: FakeSupabaseClient) -> MessageStore:
    return MessageStore(fake_db)


@pytest.fixture
def messaging_service(
    fake_db: FakeSupabaseClient,
    conversation_store: ConversationStore,
    message_store: MessageStore,
    feed: ChangeFeed,
) -> MessagingService:
    """Provide the messaging facade wired to the in-memory database."""
    return MessagingService(
        conversation_store=conversation_store,
        message_store=message_store,
        profile_service=ProfileService(fake_db),
        feed=feed,
    )


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client for health checks.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()
    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("src.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(
    mock_supabase_client: MagicMock,
    messaging_service: MessagingService,
    feed: ChangeFeed,
) -> Generator[TestClient, None, None]:
    """Provide a test client whose messaging routes use the in-memory database.

    Bearer tokens (and the WebSocket ``token`` parameter) are plain user
    UUIDs; anything else is rejected as an invalid token.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.api.deps import get_messaging_service
    from src.main import app

    app.dependency_overrides[get_messaging_service] = lambda: messaging_service
    with (
        patch("src.api.deps.authenticate_token", side_effect=user_for_token),
        patch("src.api.routes.messages.authenticate_token", side_effect=user_for_token),
        patch("src.api.routes.messages.get_change_feed", return_value=feed),
    ):
        with TestClient(app) as test_client:
            yield test_client
    app.dependency_overrides.clear()
