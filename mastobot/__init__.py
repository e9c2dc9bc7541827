"""
Mastodon GPT Bot - replies to mentions and posts on a timer using OpenAI.

The bot listens to the Mastodon streaming API, answers mentions with the
OpenAI Responses API (keeping per-thread conversation state) and publishes
an unprompted post every interval.

Modules:
    bot: Main orchestrator that coordinates all components
    notification_stream: Websocket ingest, reconnect loop, mention handler
    reply_generator: Prompt building and degraded-output repair
    thread_context: Thread key and transcript resolution
    conversation_store: SQLite map from thread to last response id
    rate_limiter: Minimum spacing between model calls
    free_post: Periodic free-post worker
    mastodon_client: Mastodon REST calls
    ai_client: OpenAI Responses API client
    text_utils: HTML stripping and character-limit fitting
    models: Shared data types

Entry Point:
    python -m mastobot.bot
"""

__version__ = "0.1.0"
