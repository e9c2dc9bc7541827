"""
Reply Generation Orchestrator.

Turns a mention into reply text, repairing degraded model output before it
reaches Mastodon.

Flow:
    ┌─────────────────────────────────────────────────────────────┐
    │  1. Classify: force web search for release-note questions   │
    │  2. Build request from the with/without-context template    │
    │  3. Call model (140 tokens, previous_response_id if known)  │
    │  4. Empty or incomplete → one tightened retry (120 tokens)  │
    │  5. Echo of the question → one "answer it" retry (1024)     │
    │  6. Leaked JSON/array payload → canned apology              │
    └─────────────────────────────────────────────────────────────┘

The pure helpers (should_force_search, is_echo, the message builders) have
no side effects so they can be tested deterministically.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from config.prompts import (
    ANTI_ECHO_INSTRUCTION,
    CONTEXT_PLACEHOLDER,
    ECHO_RETRY_INSTRUCTION,
    FALLBACK_REPLY,
    PATCH_RELEASE_INSTRUCTION,
    RETRY_FORMAT_INSTRUCTION,
    SEARCH_MANDATE_INSTRUCTION,
    USER_TEXT_PLACEHOLDER,
    ChatMessage,
    PromptConfig,
)
from mastobot.ai_client import AIClient, web_search_tool
from mastobot.models import ModelResponse, ReplyResult

logger = logging.getLogger(__name__)

JST = timezone(timedelta(hours=9), "JST")

INITIAL_MAX_OUTPUT_TOKENS = 140
RETRY_MAX_OUTPUT_TOKENS = 120
ECHO_RETRY_MAX_OUTPUT_TOKENS = 1024

_JP_SEARCH_RE = re.compile(r"(リリースノート|変更点|変更履歴|ハイライト|新機能|何が(新しい|変わった)|教えて)")
_EN_SEARCH_RE = re.compile(
    r"(release\s*notes?|changelog|what'?s\s*new|highlights?|patch\s*notes?)",
    re.IGNORECASE,
)
_VERSION_RE = re.compile(r"\b\d+\.\d+(\.\d+)?\b")
_WHITESPACE_RE = re.compile(r"\s+")


# =============================================================================
# Pure helpers
# =============================================================================

def should_force_search(user_text: str) -> bool:
    """True for release-note / changelog / version-number questions."""
    return bool(
        _JP_SEARCH_RE.search(user_text)
        or _EN_SEARCH_RE.search(user_text)
        or _VERSION_RE.search(user_text)
    )


def _without_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub("", text)


def is_echo(user_text: str, reply_text: str) -> bool:
    """True when the reply merely repeats the input, ignoring whitespace."""
    user = _without_whitespace(user_text)
    reply = _without_whitespace(reply_text)
    return bool(user) and user == reply


def now_tokyo_rfc3339(now: Optional[datetime] = None) -> str:
    """Current time in JST as an RFC 3339 string."""
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(JST).isoformat()


def _system(content: str) -> dict:
    return {"role": "system", "content": content}


def base_prompt_for_reply(prompts: PromptConfig, conversation_context: Optional[str]) -> list[ChatMessage]:
    """Pick the template by whether a transcript is available."""
    if conversation_context is not None:
        return prompts.reply_with_context
    return prompts.reply_without_context


def apply_placeholders(
    template: list[ChatMessage],
    user_text: str,
    conversation_context: Optional[str],
) -> tuple[list[dict], bool, bool]:
    """
    Substitute {{USER_TEXT}} and {{CONTEXT}} in a template.

    Returns:
        (messages, had_user_placeholder, had_context_placeholder)
    """
    context = conversation_context or ""
    had_user = False
    had_context = False
    messages = []
    for message in template:
        content = message.content
        had_user = had_user or USER_TEXT_PLACEHOLDER in content
        had_context = had_context or CONTEXT_PLACEHOLDER in content
        content = content.replace(USER_TEXT_PLACEHOLDER, user_text).replace(CONTEXT_PLACEHOLDER, context)
        messages.append({"role": message.role, "content": content})
    return messages, had_user, had_context


def _append_missing_inputs(
    messages: list[dict],
    user_text: str,
    conversation_context: Optional[str],
    had_user: bool,
    had_context: bool,
) -> None:
    # Only add what the template did not already substitute
    if conversation_context is not None and not had_context:
        messages.append(_system(f"[context]\n{conversation_context}"))
    if not had_user:
        messages.append({"role": "user", "content": user_text})


def build_initial_messages(
    prompts: PromptConfig,
    user_text: str,
    conversation_context: Optional[str],
    force_search: bool,
    now: Optional[datetime] = None,
) -> list[dict]:
    """Build the first request of a reply."""
    template = base_prompt_for_reply(prompts, conversation_context)
    messages, had_user, had_context = apply_placeholders(template, user_text, conversation_context)

    messages.append(_system(f"CurrentTime(JST): {now_tokyo_rfc3339(now)}"))
    messages.append(_system(ANTI_ECHO_INSTRUCTION))

    if force_search:
        messages.append(_system(SEARCH_MANDATE_INSTRUCTION))
        messages.append(_system(PATCH_RELEASE_INSTRUCTION))

    _append_missing_inputs(messages, user_text, conversation_context, had_user, had_context)
    return messages


def build_retry_messages(
    prompts: PromptConfig,
    user_text: str,
    conversation_context: Optional[str],
    now: Optional[datetime] = None,
) -> list[dict]:
    """Build the tightened request used after empty or incomplete output."""
    template = base_prompt_for_reply(prompts, conversation_context)
    messages, had_user, had_context = apply_placeholders(template, user_text, conversation_context)

    messages.append(_system(RETRY_FORMAT_INSTRUCTION))
    messages.append(_system(f"CurrentTime(JST): {now_tokyo_rfc3339(now)}"))

    _append_missing_inputs(messages, user_text, conversation_context, had_user, had_context)
    return messages


def build_echo_retry_messages(
    prompts: PromptConfig,
    user_text: str,
    conversation_context: Optional[str],
) -> list[dict]:
    """Build the request used after the model echoed the question back."""
    template = base_prompt_for_reply(prompts, conversation_context)
    messages, had_user, had_context = apply_placeholders(template, user_text, conversation_context)

    messages.append(_system(ECHO_RETRY_INSTRUCTION))

    _append_missing_inputs(messages, user_text, conversation_context, had_user, had_context)
    return messages


def sanitize_reply(text: str) -> str:
    """Replace a leaked structured payload with the canned apology."""
    clean = text.strip()
    if clean.startswith("{") or clean.startswith("["):
        logger.warning("Model returned a structured payload, replacing with fallback reply")
        return FALLBACK_REPLY
    return clean


# =============================================================================
# Orchestrator
# =============================================================================

class ReplyGenerator:
    """
    Generates reply text with a two-stage repair policy.

    Network and HTTP errors from the model propagate to the caller; at most
    two extra model calls are made per reply.
    """

    def __init__(
        self,
        ai_client: AIClient,
        prompts: PromptConfig,
        model: str,
        temperature: float = 0.7,
        enable_web_search: bool = False,
    ) -> None:
        self.ai = ai_client
        self.prompts = prompts
        self.model = model
        self.temperature = temperature
        self.enable_web_search = enable_web_search

    def _tools(self, force_search: bool) -> Optional[list[dict]]:
        if self.enable_web_search or force_search:
            return [web_search_tool(search_context_size="low")]
        return None

    async def generate_reply(
        self,
        user_text: str,
        conversation_context: Optional[str] = None,
        previous_response_id: Optional[str] = None,
    ) -> ReplyResult:
        """
        Generate a reply for one mention.

        Args:
            user_text: HTML-stripped mention text.
            conversation_context: Thread transcript, if one was resolved.
            previous_response_id: Last response id stored for the thread.

        Returns:
            ReplyResult with the sanitized text and the adopted response id.

        Raises:
            ModelCallError: On a failed or malformed model response.
            httpx.HTTPError: On transport failures.
        """
        force_search = should_force_search(user_text)
        if force_search:
            logger.info("Release-note style question detected, forcing web search")

        messages = build_initial_messages(self.prompts, user_text, conversation_context, force_search)
        res: ModelResponse = await self.ai.call_model(
            messages,
            model=self.model,
            temperature=self.temperature,
            max_output_tokens=INITIAL_MAX_OUTPUT_TOKENS,
            previous_response_id=previous_response_id,
            tools=self._tools(force_search),
        )

        if res.is_degraded:
            logger.warning(f"Degraded model output (status={res.status}), retrying with tighter prompt")
            retry_res = await self.ai.call_model(
                build_retry_messages(self.prompts, user_text, conversation_context),
                model=self.model,
                temperature=self.temperature,
                max_output_tokens=RETRY_MAX_OUTPUT_TOKENS,
                tools=self._tools(force_search),
            )
            if retry_res.text.strip():
                res = retry_res

        if not force_search and is_echo(user_text, res.text.strip()):
            logger.warning("Model echoed the mention, retrying with an explicit answer instruction")
            retry_res = await self.ai.call_model(
                build_echo_retry_messages(self.prompts, user_text, conversation_context),
                model=self.model,
                temperature=self.temperature,
                max_output_tokens=ECHO_RETRY_MAX_OUTPUT_TOKENS,
            )
            if retry_res.text.strip():
                res = retry_res

        return ReplyResult(
            text=sanitize_reply(res.text),
            response_id=res.id,
            status=res.status,
        )
