"""
AI Client - OpenAI Responses API client.

This module wraps the single ``call_model`` operation used by both the
reply orchestrator and the free-post worker. The Responses API keeps
conversation state server-side: passing ``previous_response_id`` continues
an earlier exchange without resending history.

Configuration:
    OPENAI_BASE_URL=https://api.openai.com/v1
    OPENAI_API_KEY=sk-xxx
    OPENAI_REPLY_MODEL=gpt-4.1-mini

Usage:
    from mastobot.ai_client import AIClient

    client = AIClient(
        base_url=settings.openai_base_url,
        api_key=settings.openai_api_key,
        http_client=http,
    )

    response = await client.call_model(
        messages=[{"role": "user", "content": "こんにちは"}],
        model=settings.openai_reply_model,
        max_output_tokens=140,
    )
"""

import json
import logging
from typing import Any, Optional

import httpx

from mastobot.models import ModelResponse

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL = "web_search_preview"


class ModelCallError(Exception):
    """Raised on a non-success status or malformed body from the model API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def web_search_tool(search_context_size: Optional[str] = None) -> dict:
    """Build the web search tool definition."""
    tool = {"type": WEB_SEARCH_TOOL}
    if search_context_size:
        tool["search_context_size"] = search_context_size
    return tool


def extract_output_text(value: Any) -> str:
    """
    Collect every ``{"type": "output_text", "text": ...}`` node.

    The Responses API nests output text inside message items; walking the
    whole tree keeps this robust to tool-call items appearing in between.

    Returns:
        All output texts joined with newlines, or "" if none were found.
    """
    parts: list[str] = []

    def walk(node: Any) -> None:
        if isinstance(node, dict):
            if node.get("type") == "output_text" and isinstance(node.get("text"), str):
                parts.append(node["text"])
            for child in node.values():
                walk(child)
        elif isinstance(node, list):
            for child in node:
                walk(child)

    walk(value)
    return "\n".join(parts)


class AIClient:
    """
    OpenAI Responses API client.

    Uses the shared asynchronous HTTP client. Errors are not retried here:
    the reply orchestrator owns the retry policy for degraded output.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http_client: httpx.AsyncClient,
    ) -> None:
        """
        Initialize the AI client.

        Args:
            base_url: API endpoint URL (e.g., https://api.openai.com/v1).
            api_key: OpenAI API key.
            http_client: Shared httpx client (carries the timeout).
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.http = http_client

        logger.info(f"AI Client initialized: {self.base_url}")

    async def call_model(
        self,
        messages: list[dict],
        model: str,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        previous_response_id: Optional[str] = None,
        tools: Optional[list[dict]] = None,
    ) -> ModelResponse:
        """
        Call the Responses API once.

        Args:
            messages: Role/content dicts sent as ``input``.
            model: Model identifier.
            temperature: Sampling temperature.
            max_output_tokens: Response length cap.
            previous_response_id: Continue server-side conversation state.
            tools: Tool definitions (e.g., web search).

        Returns:
            ModelResponse with id, extracted text and status.

        Raises:
            ModelCallError: On a non-success status or a non-JSON body.
            httpx.HTTPError: On transport failures.
        """
        body: dict[str, Any] = {"model": model, "input": messages}
        if temperature is not None:
            body["temperature"] = temperature
        if max_output_tokens is not None:
            body["max_output_tokens"] = max_output_tokens
        if previous_response_id:
            body["previous_response_id"] = previous_response_id
        if tools:
            body["tools"] = tools

        logger.debug(f"Calling model {model} with {len(messages)} message(s)")

        response = await self.http.post(
            url=f"{self.base_url}/responses",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json=body,
        )

        raw = response.text
        if not response.is_success:
            raise ModelCallError(
                f"OpenAI error {response.status_code}: {raw}",
                status_code=response.status_code,
            )

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ModelCallError(f"error decoding response body: {e}\nraw: {raw}") from e
        if not isinstance(data, dict):
            raise ModelCallError(f"unexpected response body: {raw}")

        text = extract_output_text(data.get("output"))
        if not text.strip():
            logger.warning(f"Model {model} returned no output text (status={data.get('status')})")

        return ModelResponse(
            id=str(data.get("id") or ""),
            text=text,
            status=data.get("status"),
        )

    async def health_check(self) -> bool:
        """
        Check if the AI service is available.

        Returns:
            True if service is responding, False otherwise.
        """
        try:
            response = await self.http.get(
                url=f"{self.base_url}/models",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"AI health check failed: {e}")
            return False
