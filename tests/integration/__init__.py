"""
Integration Tests Package.

This package contains integration tests that verify
component interactions with mocked external APIs.

Tests verify:
- Stream frame to posted reply, end to end
- Conversation continuity across mentions in one thread
- Degradation when thread context is unavailable
"""
