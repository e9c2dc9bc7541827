"""
Configuration package for the Mastodon GPT bot.

Modules:
    settings: Centralized configuration using Pydantic Settings
    prompts: Prompt templates, fixed instructions and the JSON prompt loader
"""

from config.settings import Settings, Visibility, settings

__all__ = ["Settings", "Visibility", "settings"]
