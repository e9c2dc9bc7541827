"""
AI prompts and templates for the Mastodon GPT bot.

This module centralizes all AI-related prompts and templates.
Modify these to adjust the tone, style, and behavior of generated posts.

Structure:
    PromptConfig: Message templates for replies and free posts
    DEFAULT_PROMPTS: Built-in templates used when no JSON override exists
    load_prompts: Reads PROMPTS_PATH (JSON) and falls back to the defaults
    *_INSTRUCTION: Fixed system instructions appended by the reply pipeline

Placeholders:
    {{USER_TEXT}}: The latest mention, HTML-stripped
    {{CONTEXT}}: The flattened thread transcript (one "- " bullet per post)
"""

import json
import logging
from pathlib import Path
from typing import List, Union

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

USER_TEXT_PLACEHOLDER = "{{USER_TEXT}}"
CONTEXT_PLACEHOLDER = "{{CONTEXT}}"


class ChatMessage(BaseModel):
    """A single role/content message as sent to the Responses API."""

    role: str
    content: str


class PromptConfig(BaseModel):
    """All message templates the bot knows about."""

    free_toot_morning: List[ChatMessage]
    free_toot_day: List[ChatMessage]
    free_toot_night: List[ChatMessage]
    reply_with_context: List[ChatMessage]
    reply_without_context: List[ChatMessage]


# =============================================================================
# Persona
# =============================================================================

PERSONA = (
    "あなたは Mastodon のタイムラインでゆるく喋る日本語話者です。"
    "丁寧すぎない口調で、相手を安心させる感じで返信してください。"
    "ただし失礼な言い方や攻撃的な表現はしないでください。"
)

FREE_TOOT_PERSONA = (
    "あなたは Mastodon に投稿する日本語話者です。"
    "タイムラインにそのまま流せるような、短めの自然なつぶやきを生成してください。"
    "攻撃的・不適切な表現は使わず、1〜2文程度に収めてください。"
)

# =============================================================================
# Default Templates
# =============================================================================

DEFAULT_PROMPTS = PromptConfig(
    free_toot_morning=[
        ChatMessage(role="system", content=FREE_TOOT_PERSONA + "朝らしい、少し眠そうで前向きな雰囲気で。"),
        ChatMessage(role="user", content="今の気分で、自由につぶやいてください。"),
    ],
    free_toot_day=[
        ChatMessage(role="system", content=FREE_TOOT_PERSONA),
        ChatMessage(role="user", content="今の気分で、自由につぶやいてください。"),
    ],
    free_toot_night=[
        ChatMessage(role="system", content=FREE_TOOT_PERSONA + "夜らしい、落ち着いた雰囲気で。"),
        ChatMessage(role="user", content="今の気分で、自由につぶやいてください。"),
    ],
    reply_with_context=[
        ChatMessage(role="system", content=PERSONA),
        ChatMessage(
            role="user",
            content=(
                "以下は、これまでの会話の流れです（古い順）。一番下が相手の最新の投稿です:\n"
                "{{CONTEXT}}\n\n"
                "この会話の流れを踏まえて、相手の最新の投稿「{{USER_TEXT}}」に対する返信として、"
                "Mastodon に投稿できる短めのメッセージを書いてください。\n"
                "同じ質問に対しても、できるだけ毎回少し表現を変えてください。"
            ),
        ),
    ],
    reply_without_context=[
        ChatMessage(role="system", content=PERSONA),
        ChatMessage(
            role="user",
            content=(
                "相手の投稿への返信として一言を書いてください。\n"
                "同じ質問に対しても、できるだけ毎回少し表現を変えてください。\n"
                "必要があれば、もう1〜2文だけ軽く説明を足してもOKです。\n\n"
                "相手の投稿: {{USER_TEXT}}"
            ),
        ),
    ],
)

# =============================================================================
# Fixed Instructions
# =============================================================================

ANTI_ECHO_INSTRUCTION = (
    "ユーザーの発言をそのまま繰り返すだけの返答は禁止です。"
    "必ず質問や発言の内容に答え、そのうえで必要なら短くボケや相槌を添えてください。"
    "質問文を引用するときは、その後に必ずあなたの考えを書くこと。"
)

SEARCH_MANDATE_INSTRUCTION = " ".join([
    "When asked about versions/release notes/highlights:",
    "• You MUST use web_search to fetch official sources.",
    "• Output: 2 bullets max, plain text only.",
    "• Each bullet ≤ 70 Japanese chars.",
    "• Include the exact version and a YYYY-MM-DD (JST) date.",
    "• Add one source domain in parentheses, e.g., (blog.rust-lang.org).",
    "• Do NOT speculate about future releases.",
    "• If a future date isn't confirmed by official sources, say “未確定”.",
    "• NO URLs and NO markdown. Do not output '[' ']' '(' within URLs.",
    "• Keep total length ≤ 180 Japanese chars.",
    "• Perform at most one search call.",
])

PATCH_RELEASE_INSTRUCTION = "For patch releases (e.g., 1.91.1), summarize only 1–2 key fixes."

RETRY_FORMAT_INSTRUCTION = (
    "2 bullets max. ≤ 60 Japanese chars each. Plain text. No URLs. "
    "Unconfirmed future dates → “未確定”."
)

ECHO_RETRY_INSTRUCTION = (
    "さっきの返答はユーザーの発言をそのまま繰り返してしまっていました。"
    "今度は必ず質問に答えてください。"
    "質問文をそのまま返すのではなく、あなたの答えやリアクションを1〜3文で書いてください。"
)

# Posted instead of a leaked JSON/array payload
FALLBACK_REPLY = "短く要点＋出典ドメインでまとめられなかったみたい。もう一度聞いて！"


def load_prompts(path: Union[str, Path]) -> PromptConfig:
    """
    Load prompt templates from a JSON file.

    Args:
        path: Location of the prompts JSON (keys match PromptConfig fields).

    Returns:
        Parsed PromptConfig, or DEFAULT_PROMPTS when the file does not exist.

    Raises:
        ValueError: If the file exists but is not valid prompt JSON.
    """
    prompt_path = Path(path)
    if not prompt_path.exists():
        logger.info(f"No prompts file at {prompt_path}, using built-in prompts")
        return DEFAULT_PROMPTS

    try:
        data = json.loads(prompt_path.read_text(encoding="utf-8"))
        prompts = PromptConfig.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"Failed to parse prompts JSON {prompt_path}: {e}") from e

    logger.info(f"Loaded prompts from {prompt_path}")
    return prompts
