"""
Pytest fixtures and configuration.

This module provides shared fixtures for all tests:
- Mock settings for testing without real credentials
- Mock clients for AI, Mastodon, and the conversation store
- Sample Mastodon payloads
- Real functionality test fixtures (time control, temp SQLite, httpx transports)

Usage:
    def test_something(mock_settings, mock_ai_client):
        # fixtures are automatically injected
        pass
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from freezegun import freeze_time

from config.prompts import DEFAULT_PROMPTS
from config.settings import Visibility
from mastobot.models import ModelResponse, ResolvedThread


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "real: mark test as a real functionality test (not mock-based)"
    )
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring multiple components"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (>1s execution time)"
    )


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def mock_settings():
    """
    Provide mock settings for testing.

    Returns a MagicMock with all required settings attributes.
    """
    settings = MagicMock()

    # Mastodon settings
    settings.mastodon_base_url = "https://mastodon.test"
    settings.mastodon_access_token = "test-mastodon-token"
    settings.streaming_url = "wss://mastodon.test/api/v1/streaming"
    settings.mastodon_post_visibility = Visibility.UNLISTED
    settings.mastodon_char_limit = 500

    # OpenAI settings
    settings.openai_api_key = "test-api-key"
    settings.openai_base_url = "https://api.test.com/v1"
    settings.openai_model = "ft:test-free-model"
    settings.openai_reply_model = "test-reply-model"
    settings.enable_web_search = False
    settings.reply_temperature = 0.7
    settings.free_toot_temperature = 0.8

    # Timing settings
    settings.free_toot_interval_secs = 3600
    settings.reply_min_interval = 0.0
    settings.stream_reconnect_delay_secs = 0.0

    return settings


@pytest.fixture
def prompts():
    """Built-in prompt templates."""
    return DEFAULT_PROMPTS


# =============================================================================
# Client Fixtures (for mock tests)
# =============================================================================

@pytest.fixture
def mock_ai_client():
    """Provide mock AI client."""
    client = AsyncMock()
    client.call_model.return_value = ModelResponse(id="resp_1", text="テスト返信です", status="completed")
    client.health_check.return_value = True
    return client


@pytest.fixture
def mock_mastodon():
    """Provide mock Mastodon client."""
    mastodon = AsyncMock()
    mastodon.post_reply = AsyncMock()
    mastodon.post_status = AsyncMock()
    return mastodon


@pytest.fixture
def mock_store():
    """Provide mock conversation store."""
    store = AsyncMock()
    store.get.return_value = None
    store.upsert = AsyncMock()
    store.health_check.return_value = True
    return store


@pytest.fixture
def mock_resolver():
    """Provide a resolver that always returns a root thread with a transcript."""
    resolver = AsyncMock()
    resolver.resolve.return_value = ResolvedThread(thread_key="100", transcript="- 元の投稿")
    return resolver


# =============================================================================
# Data Fixtures
# =============================================================================

@pytest.fixture
def sample_status_payload():
    """Provide a Mastodon status as delivered by the API."""
    return {
        "id": "200",
        "content": "<p><span class=\"h-card\">@bot</span> Rust 1.80 の変更点を教えて&amp;よろしく</p>",
        "visibility": "public",
    }


@pytest.fixture
def sample_mention_payload(sample_status_payload):
    """Provide a mention notification payload."""
    return {
        "id": "9001",
        "type": "mention",
        "account": {"acct": "alice@example.social", "bot": False},
        "status": sample_status_payload,
    }


@pytest.fixture
def make_stream_frame() -> Callable[[dict], str]:
    """Wrap a notification payload in a streaming API envelope."""
    def _frame(payload: dict, event: str = "notification") -> str:
        return json.dumps({
            "stream": ["user:notification"],
            "event": event,
            "payload": json.dumps(payload),
        })
    return _frame


# =============================================================================
# Time Fixtures (for real tests)
# =============================================================================

@pytest.fixture
def frozen_time():
    """Freeze time at a specific datetime (UTC) for testing."""
    with freeze_time("2025-11-26 05:30:00"):
        yield datetime(2025, 11, 26, 5, 30, 0)


# =============================================================================
# Storage Fixtures (for real tests)
# =============================================================================

@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path for a throwaway SQLite database."""
    return tmp_path / "bot_state.sqlite"


# =============================================================================
# HTTP Fixtures (for real tests)
# =============================================================================

@pytest.fixture
def recorded_transport():
    """
    Provide an httpx.MockTransport factory that records requests.

    Usage:
        transport, requests = recorded_transport(handler)
    """
    def _make(handler: Callable[[httpx.Request], httpx.Response]):
        requests: list[httpx.Request] = []

        def _handle(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        return httpx.MockTransport(_handle), requests

    return _make


@pytest.fixture
def responses_body():
    """Build a Responses API body with a single output_text item."""
    def _body(text: str, response_id: str = "resp_1", status: str = "completed") -> dict:
        return {
            "id": response_id,
            "status": status,
            "output": [
                {
                    "type": "message",
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": text, "annotations": []}],
                }
            ],
        }
    return _body
