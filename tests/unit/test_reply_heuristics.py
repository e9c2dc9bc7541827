"""
Tests for the pure reply helpers.

This test suite verifies:
- Release-note / version question detection
- Echo detection
- Placeholder substitution
- Message assembly for the initial, retry and echo-retry requests
- Structured payload sanitizing
"""

from datetime import datetime, timezone

import pytest

from config.prompts import (
    ANTI_ECHO_INSTRUCTION,
    ECHO_RETRY_INSTRUCTION,
    FALLBACK_REPLY,
    PATCH_RELEASE_INSTRUCTION,
    RETRY_FORMAT_INSTRUCTION,
    SEARCH_MANDATE_INSTRUCTION,
    ChatMessage,
    PromptConfig,
)
from mastobot.reply_generator import (
    apply_placeholders,
    build_echo_retry_messages,
    build_initial_messages,
    build_retry_messages,
    is_echo,
    now_tokyo_rfc3339,
    sanitize_reply,
    should_force_search,
)

NOW = datetime(2025, 11, 26, 5, 30, tzinfo=timezone.utc)


@pytest.fixture
def bare_prompts():
    """Templates without any placeholders."""
    plain = [ChatMessage(role="system", content="persona")]
    return PromptConfig(
        free_toot_morning=plain,
        free_toot_day=plain,
        free_toot_night=plain,
        reply_with_context=[ChatMessage(role="system", content="with context")],
        reply_without_context=[ChatMessage(role="system", content="without context")],
    )


class TestShouldForceSearch:
    """Test suite for should_force_search."""

    @pytest.mark.parametrize("text", [
        "Rust 1.91.1のリリースノート教えて",
        "Rustのリリースノート見た？",
        "新機能ある？",
        "何が変わったの",
        "最新版について教えて",
        "Release Notes please",
        "what's new in python",
        "CHANGELOG?",
        "patch notes",
        "1.91.1 どう？",
        "Python 3.12 is out",
    ])
    def test_positive(self, text):
        assert should_force_search(text) is True

    @pytest.mark.parametrize("text", [
        "おはよう",
        "今日は寒いね",
        "hello there",
        "",
    ])
    def test_negative(self, text):
        assert should_force_search(text) is False


class TestIsEcho:
    """Test suite for is_echo."""

    @pytest.mark.parametrize("user_text,reply", [
        ("今日の天気は？", "今日の天気は？"),
        ("a b", "ab"),
        ("今日 は 寒い", "今日は\n寒い"),
    ])
    def test_echo(self, user_text, reply):
        assert is_echo(user_text, reply) is True

    @pytest.mark.parametrize("user_text,reply", [
        ("今日の天気は？", "晴れだよ"),
        ("今日は寒い", "寒いね、温かくしてね"),
    ])
    def test_different(self, user_text, reply):
        assert is_echo(user_text, reply) is False

    def test_empty_is_not_echo(self):
        assert is_echo("", "") is False
        assert is_echo("   ", " ") is False


class TestPlaceholders:
    """Test suite for apply_placeholders."""

    def test_substitutes_both(self):
        template = [ChatMessage(role="user", content="ctx={{CONTEXT}} q={{USER_TEXT}}")]
        messages, had_user, had_context = apply_placeholders(template, "質問", "- 前の投稿")

        assert messages == [{"role": "user", "content": "ctx=- 前の投稿 q=質問"}]
        assert had_user is True
        assert had_context is True

    def test_reports_missing(self):
        template = [ChatMessage(role="system", content="persona")]
        messages, had_user, had_context = apply_placeholders(template, "質問", None)

        assert messages == [{"role": "system", "content": "persona"}]
        assert had_user is False
        assert had_context is False


class TestMessageBuilders:
    """Test suite for request assembly."""

    def test_now_in_jst(self):
        assert now_tokyo_rfc3339(NOW) == "2025-11-26T14:30:00+09:00"

    def test_initial_with_placeholders_in_template(self, prompts):
        messages = build_initial_messages(prompts, "やあ", "- やあ", force_search=False, now=NOW)
        contents = [m["content"] for m in messages]

        assert "CurrentTime(JST): 2025-11-26T14:30:00+09:00" in contents
        assert ANTI_ECHO_INSTRUCTION in contents
        assert SEARCH_MANDATE_INSTRUCTION not in contents
        # Template already carries both inputs
        assert messages[-1]["content"] == ANTI_ECHO_INSTRUCTION

    def test_initial_force_search_adds_instructions(self, prompts):
        messages = build_initial_messages(prompts, "1.80 の変更点", None, force_search=True, now=NOW)
        contents = [m["content"] for m in messages]

        assert contents.index(SEARCH_MANDATE_INSTRUCTION) < contents.index(PATCH_RELEASE_INSTRUCTION)

    def test_initial_appends_missing_inputs(self, bare_prompts):
        messages = build_initial_messages(bare_prompts, "質問", "- 文脈", force_search=False, now=NOW)

        assert messages[0]["content"] == "with context"
        assert messages[-2] == {"role": "system", "content": "[context]\n- 文脈"}
        assert messages[-1] == {"role": "user", "content": "質問"}

    def test_initial_without_context_uses_other_template(self, bare_prompts):
        messages = build_initial_messages(bare_prompts, "質問", None, force_search=False, now=NOW)

        assert messages[0]["content"] == "without context"
        assert all("[context]" not in m["content"] for m in messages)
        assert messages[-1] == {"role": "user", "content": "質問"}

    def test_retry_messages(self, bare_prompts):
        messages = build_retry_messages(bare_prompts, "質問", None, now=NOW)

        assert messages[1]["content"] == RETRY_FORMAT_INSTRUCTION
        assert messages[2]["content"].startswith("CurrentTime(JST): ")
        assert messages[-1] == {"role": "user", "content": "質問"}

    def test_echo_retry_messages(self, bare_prompts):
        messages = build_echo_retry_messages(bare_prompts, "質問", "- 文脈")

        assert messages[1]["content"] == ECHO_RETRY_INSTRUCTION
        assert messages[-2]["content"] == "[context]\n- 文脈"
        assert messages[-1] == {"role": "user", "content": "質問"}


class TestSanitizeReply:
    """Test suite for sanitize_reply."""

    def test_plain_text_trimmed(self):
        assert sanitize_reply("  こんにちは  ") == "こんにちは"

    @pytest.mark.parametrize("payload", ['{"a": 1}', '  [1, 2]', "[まとめ] です"])
    def test_structured_payload_replaced(self, payload):
        assert sanitize_reply(payload) == FALLBACK_REPLY
