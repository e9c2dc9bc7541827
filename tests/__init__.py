"""
Test Suite for the Mastodon GPT Bot.

Structure:
    tests/
    ├── conftest.py          # Shared fixtures and configuration
    ├── unit/                # Mock-based unit tests
    │   ├── test_free_post.py
    │   ├── test_rate_limiter.py
    │   ├── test_reply_heuristics.py
    │   ├── test_settings.py
    │   ├── test_stream_events.py
    │   └── test_text_utils.py
    ├── integration/         # End-to-end reply pipeline (in-memory HTTP)
    │   └── test_integration.py
    └── real/                # Real functionality tests
        ├── test_ai_client_real.py
        ├── test_bot_orchestration_real.py
        ├── test_conversation_store_real.py
        ├── test_mastodon_client_real.py
        ├── test_notification_handler_real.py
        ├── test_notification_stream_real.py
        ├── test_reply_generator_real.py
        └── test_thread_context_real.py

Run tests:
    pytest tests/                    # All tests
    pytest tests/unit/               # Unit tests only
    pytest tests/real/               # Real functionality tests only
    pytest tests/integration/        # Integration tests only
    pytest tests/ -m "not slow"      # Skip retry-backoff tests
"""
