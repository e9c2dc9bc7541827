"""
Free-Post Timer - periodic unprompted posts.

Runs as an asyncio task alongside the notification stream. Each tick picks
a template by the time of day in Japan, asks the free-post model for a
short post and publishes it as a standalone status.

Time slots (JST):
    05-08  morning
    09-15  day
    16-18  evening (uses the day template)
    19-04  night

Configuration:
    FREE_TOOT_INTERVAL_SECS: Seconds between posts (default: 3600)
    FREE_TOOT_TEMPERATURE: Sampling temperature (default: 0.8)
    OPENAI_MODEL: Fine-tuned model used for free posts
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from config import settings
from config.prompts import ChatMessage, PromptConfig
from config.settings import Visibility
from mastobot.ai_client import AIClient, web_search_tool
from mastobot.mastodon_client import MastodonClient
from mastobot.rate_limiter import RateLimiter
from mastobot.reply_generator import JST
from mastobot.text_utils import fit_for_mastodon_plain

logger = logging.getLogger(__name__)

FREE_POST_MAX_OUTPUT_TOKENS = 1024


def pick_free_post_prompt(prompts: PromptConfig, hour: int) -> tuple[list[ChatMessage], str]:
    """
    Pick the template for a JST hour.

    Returns:
        (template, slot name)
    """
    if 5 <= hour <= 8:
        return prompts.free_toot_morning, "morning"
    if 9 <= hour <= 15:
        return prompts.free_toot_day, "day"
    if 16 <= hour <= 18:
        return prompts.free_toot_day, "evening"
    return prompts.free_toot_night, "night"


def season_label(month: int) -> str:
    if 3 <= month <= 5:
        return "春"
    if 6 <= month <= 8:
        return "夏"
    if 9 <= month <= 11:
        return "秋"
    return "冬"


def time_label(hour: int) -> str:
    if 5 <= hour <= 8:
        return "朝"
    if 9 <= hour <= 15:
        return "昼"
    if 16 <= hour <= 18:
        return "夕方"
    return "夜"


def build_free_post_messages(
    prompts: PromptConfig,
    now: Optional[datetime] = None,
) -> tuple[list[dict], str]:
    """
    Build the free-post request for the current JST time.

    The last user message is replaced with a season and time-of-day
    instruction, and a CurrentTime(JST) system note is appended.

    Returns:
        (messages, slot name)
    """
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    jst = current.astimezone(JST)

    template, slot = pick_free_post_prompt(prompts, jst.hour)
    messages = [{"role": m.role, "content": m.content} for m in template]

    instruction = f"{season_label(jst.month)}の{time_label(jst.hour)}のような投稿を生成してください。"
    for message in reversed(messages):
        if message["role"] == "user":
            message["content"] = instruction
            break

    messages.append({"role": "system", "content": f"CurrentTime(JST): {jst.isoformat()}"})
    return messages, slot


async def generate_free_post(
    ai: AIClient,
    prompts: PromptConfig,
    model: str,
    temperature: float,
    enable_web_search: bool = False,
    now: Optional[datetime] = None,
) -> str:
    """
    Ask the free-post model for one post.

    Raises:
        ModelCallError: On a failed or malformed model response.
    """
    messages, slot = build_free_post_messages(prompts, now)
    logger.info(f"Generating free post using {slot} prompt")

    tools = [web_search_tool()] if enable_web_search else None
    res = await ai.call_model(
        messages,
        model=model,
        temperature=temperature,
        max_output_tokens=FREE_POST_MAX_OUTPUT_TOKENS,
        tools=tools,
    )
    return res.text


async def post_free_status(
    ai: AIClient,
    mastodon: MastodonClient,
    rate_limiter: RateLimiter,
    prompts: PromptConfig,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    visibility: Optional[Visibility] = None,
    char_limit: Optional[int] = None,
    enable_web_search: Optional[bool] = None,
) -> bool:
    """
    Generate and publish one free post.

    Unset arguments fall back to the configured settings.

    Returns:
        True if a status was posted.
    """
    await rate_limiter.wait_for_slot()

    text = await generate_free_post(
        ai,
        prompts,
        model=model or settings.openai_model,
        temperature=settings.free_toot_temperature if temperature is None else temperature,
        enable_web_search=settings.enable_web_search if enable_web_search is None else enable_web_search,
    )

    body = fit_for_mastodon_plain(text, char_limit or settings.mastodon_char_limit)
    if not body:
        logger.warning("Free post came back empty, skipping")
        return False

    await mastodon.post_status(body, visibility or settings.mastodon_post_visibility)
    logger.info(f"Posted free post ({len(body)} chars)")
    return True


async def run_free_post_worker(
    ai: AIClient,
    mastodon: MastodonClient,
    rate_limiter: RateLimiter,
    prompts: PromptConfig,
    interval: Optional[int] = None,
) -> None:
    """
    Post immediately, then once every ``interval`` seconds, forever.

    Args:
        ai: Client for the free-post model.
        mastodon: Client used to publish.
        rate_limiter: Shared limiter (also used by replies).
        prompts: Loaded prompt templates.
        interval: Seconds between posts. Defaults to config value.
    """
    interval = interval or settings.free_toot_interval_secs
    logger.info(f"Free-post worker started (interval: {interval}s)")

    while True:
        try:
            await post_free_status(ai, mastodon, rate_limiter, prompts)
        except Exception as e:
            logger.error(f"Error in free-post worker: {e}")

        await asyncio.sleep(interval)
