"""
Centralized configuration for the Mastodon GPT bot.

This module uses Pydantic Settings to load and validate environment variables.
All bot configuration is centralized here to avoid scattered config files.

Usage:
    from config import settings
    print(settings.openai_reply_model)

Environment Variables:
    See .env.example for all available configuration options.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Visibility(str, Enum):
    """Mastodon post visibility levels."""

    PUBLIC = "public"
    UNLISTED = "unlisted"
    PRIVATE = "private"
    DIRECT = "direct"

    @classmethod
    def parse(cls, value: str) -> "Visibility":
        """Parse a visibility string case-insensitively."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"unknown visibility: {value}") from None


def default_streaming_url(http_base: str) -> str:
    """Derive the streaming websocket URL from the REST base URL."""
    base = http_base.rstrip("/")
    if base.startswith("https://"):
        return f"wss://{base[len('https://'):]}/api/v1/streaming"
    if base.startswith("http://"):
        return f"ws://{base[len('http://'):]}/api/v1/streaming"
    return base


def mask_secret(value: str) -> str:
    """Hide all but the first three characters of a secret."""
    if len(value) <= 6:
        return "***"
    return f"{value[:3]}***"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # Mastodon
    # =========================================================================
    mastodon_base_url: str = ""
    mastodon_access_token: str = ""
    # Defaults to wss://<host>/api/v1/streaming when unset
    mastodon_streaming_url: Optional[str] = None
    mastodon_post_visibility: Visibility = Visibility.UNLISTED
    mastodon_char_limit: int = 500

    # =========================================================================
    # OpenAI (Responses API)
    # =========================================================================
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    # Fine-tuned model used for free posts
    openai_model: str = ""
    # Base model used for replies
    openai_reply_model: str = "gpt-4.1-mini"
    enable_web_search: bool = False

    reply_temperature: float = 0.7
    free_toot_temperature: float = 0.8

    # =========================================================================
    # Prompts & Storage
    # =========================================================================
    prompts_path: str = "config/prompts.json"
    bot_db_path: str = "bot_state.sqlite"

    # =========================================================================
    # Timing
    # =========================================================================
    free_toot_interval_secs: int = 3600
    reply_min_interval_ms: int = 3000
    stream_reconnect_delay_secs: float = 5.0
    http_timeout_secs: float = 30.0

    # =========================================================================
    # Logging
    # =========================================================================
    log_level: str = "INFO"

    @field_validator("mastodon_post_visibility", mode="before")
    @classmethod
    def _parse_visibility(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Visibility.parse(value)
        return value

    @property
    def streaming_url(self) -> str:
        """Effective streaming API URL."""
        if self.mastodon_streaming_url:
            return self.mastodon_streaming_url
        return default_streaming_url(self.mastodon_base_url)

    @property
    def reply_min_interval(self) -> float:
        """Minimum spacing between model calls, in seconds."""
        return self.reply_min_interval_ms / 1000

    def redacted(self) -> Dict[str, Any]:
        """Settings snapshot that is safe to log."""
        return {
            "mastodon_base_url": self.mastodon_base_url,
            "mastodon_access_token": mask_secret(self.mastodon_access_token),
            "streaming_url": self.streaming_url,
            "openai_model": self.openai_model,
            "openai_reply_model": self.openai_reply_model,
            "openai_api_key": mask_secret(self.openai_api_key),
            "prompts_path": self.prompts_path,
            "bot_db_path": self.bot_db_path,
            "free_toot_interval_secs": self.free_toot_interval_secs,
            "reply_temperature": self.reply_temperature,
            "free_toot_temperature": self.free_toot_temperature,
            "visibility": self.mastodon_post_visibility.value,
            "char_limit": self.mastodon_char_limit,
            "reply_min_interval_ms": self.reply_min_interval_ms,
            "enable_web_search": self.enable_web_search,
        }


# Singleton instance for global settings
settings = Settings()
